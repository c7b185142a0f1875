from pydantic import BaseModel, ConfigDict


class ForumUserModel(BaseModel):
    # Forum returns many more fields, only those are used
    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    username: str
