from pydantic import BaseModel


class SiteModel(BaseModel):
    home_url: str = "https://valleyhousing.coop"
    newsletter_name: str = "valley housing coop newsletter"
