from datetime import datetime

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from app.helpers.config_models.forum import ForumConfigModel, PollModel
from app.helpers.logging import logger
from app.helpers.mail import build_subscribe_mail
from app.helpers.monitoring import (
    SpanAttributeEnum,
    gauge_set,
    start_as_current_span,
    subscription_lookup_attempts,
)
from app.models.user import ForumUserModel
from app.persistence.iforum import IForum, UserNotFoundError


@start_as_current_span("subscription_poll_user")
async def poll_user(
    email: str,
    forum: IForum,
    poll: PollModel,
) -> ForumUserModel:
    """
    Wait for a user to be visible on the forum.

    Lookup is repeated while the user is not found, with a fixed delay between attempts. Lookup errors are not retried.

    Raises a `UserNotFoundError` if the user is still missing after the last attempt.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        logger.debug(
            "User not found yet, retrying in %.1fs (attempt %i/%i)",
            poll.delay_sec,
            retry_state.attempt_number,
            poll.attempts,
        )

    retrying = AsyncRetrying(
        before_sleep=_log_retry,
        retry=retry_if_result(lambda user: user is None),
        stop=stop_after_attempt(poll.attempts),
        wait=wait_fixed(poll.delay_sec),
    )
    try:
        user: ForumUserModel = await retrying(forum.lookup_user, email)
    except RetryError as e:
        raise UserNotFoundError(
            f"Could not find user by email after {poll.attempts} attempts: {email}"
        ) from e

    gauge_set(
        subscription_lookup_attempts,
        retrying.statistics.get("attempt_number", 1),
    )
    return user


@start_as_current_span("subscription_subscribe")
async def subscribe(
    email: str,
    config: ForumConfigModel,
    forum: IForum,
    poll: PollModel,
    now: datetime | None = None,
) -> ForumUserModel:
    """
    Subscribe an email to the forum group.

    Steps:
    1. Send a subscription email to the forum, which creates the user if needed
    2. Wait for the user to be visible
    3. Add the user to the group

    Steps are not rolled back, a failure in the last step leaves the user created but out of the group.

    Returns the user added to the group.
    """
    # Enrich span
    SpanAttributeEnum.SUBSCRIPTION_EMAIL.attribute(email)
    SpanAttributeEnum.FORUM_GROUP_ID.attribute(config.group_path)

    await forum.handle_mail(
        build_subscribe_mail(
            now=now,
            sender=email,
            to=config.to_address,
        )
    )
    logger.info("Subscription mail sent to %s", config.to_address)

    user = await poll_user(
        email=email,
        forum=forum,
        poll=poll,
    )
    SpanAttributeEnum.FORUM_USERNAME.attribute(user.username)
    logger.info("User %s found", user.username)

    await forum.add_to_group(user.username)
    logger.info("User %s added to group %s", user.username, config.group_path)

    return user
