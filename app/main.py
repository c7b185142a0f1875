from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, PlainTextResponse
from jinja2 import Environment, FileSystemLoader
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog.contextvars import clear_contextvars

from app.helpers.config import CONFIG
from app.helpers.config_models.forum import ForumConfigModel, load_forum_config
from app.helpers.http import aiohttp_session
from app.helpers.logging import logger
from app.helpers.monitoring import (
    counter_add,
    start_as_current_span,
    subscription_failed,
    subscription_succeeded,
)
from app.helpers.resources import resources_dir
from app.helpers.subscription import subscribe
from app.persistence.forum_api import ForumApi
from app.persistence.iforum import IForum

# First log
logger.info(
    "forum-subscribe v%s",
    CONFIG.version,
)

# Jinja configuration
_jinja = Environment(
    auto_reload=False,  # Disable auto-reload for performance
    autoescape=True,
    enable_async=True,
    loader=FileSystemLoader(resources_dir("public_website")),
)

_ALLOWED_METHODS = ("POST", "GET")
_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_INSTRUCTIONS = "OK. POST form data with an email field."


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    yield

    # Close HTTP session
    await (await aiohttp_session()).close()
    aiohttp_session.cache_clear()  # pyright: ignore


# FastAPI
api = FastAPI(
    description="Subscribe an email to a forum group, from a simple HTML form.",
    lifespan=lifespan,
    title="forum-subscribe",
    version=CONFIG.version,
)


@api.api_route(
    "/{path:path}",
    methods=["DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT"],
)
@start_as_current_span("subscription_route")
async def subscription_route(request: Request) -> Response:
    """
    Single entrypoint, on any path.

    GET returns usage instructions. POST runs the subscription. Other methods are rejected with a 405.
    """
    clear_contextvars()

    if request.method == "GET":
        return PlainTextResponse(_INSTRUCTIONS)

    if request.method != "POST":
        raise HTTPException(
            detail="Method Not Allowed",
            headers={"Allow": ", ".join(_ALLOWED_METHODS)},
            status_code=HTTPStatus.METHOD_NOT_ALLOWED,
        )

    return await subscription_post(request)


async def subscription_post(request: Request) -> PlainTextResponse | HTMLResponse:
    """
    Subscribe the email from a form submission.

    Form must be URL-encoded or multipart, with an `email` field.

    Returns the confirmation page. Configuration and forum errors are returned as plain text, with a 500.
    """
    email = await _form_email(request)

    try:
        config = load_forum_config()
        await subscribe(
            config=config,
            email=email,
            forum=_use_forum(config),
            poll=CONFIG.forum.poll,
        )
    except Exception as e:
        logger.error("Subscription failed: %s", e)
        counter_add(subscription_failed, 1)
        return PlainTextResponse(
            content=str(e) or "Request failed",
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )

    counter_add(subscription_succeeded, 1)
    template = _jinja.get_template("subscribed.html.jinja")
    render = await template.render_async(
        email=email,
        home_url=CONFIG.site.home_url,
        newsletter_name=CONFIG.site.newsletter_name,
        version=CONFIG.version,
    )
    return HTMLResponse(
        content=render,
        status_code=HTTPStatus.OK,
    )


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> PlainTextResponse:
    """
    Handle HTTP exceptions and return the error as plain text.

    A 405 always advertises the methods this service accepts, including for methods rejected by the router itself.
    """
    headers = exc.headers
    if exc.status_code == HTTPStatus.METHOD_NOT_ALLOWED:
        headers = {**(headers or {}), "Allow": ", ".join(_ALLOWED_METHODS)}
    return PlainTextResponse(
        content=str(exc.detail),
        headers=headers,
        status_code=exc.status_code,
    )


async def _form_email(request: Request) -> str:
    """
    Extract the email from a form submission.

    Raises a 400 if the request is not a form, or if the email is missing or blank.
    """
    content_type = request.headers.get("content-type", "")
    if not any(form_type in content_type for form_type in _FORM_CONTENT_TYPES):
        raise HTTPException(
            detail="Expected form submission",
            status_code=HTTPStatus.BAD_REQUEST,
        )

    form = await request.form()
    value = form.get("email")
    # Uploaded files are not accepted as an email
    email = value.strip() if isinstance(value, str) else ""
    if not email:
        raise HTTPException(
            detail="Missing email",
            status_code=HTTPStatus.BAD_REQUEST,
        )
    return email


def _use_forum(config: ForumConfigModel) -> IForum:
    """
    Get the forum client for the request configuration.

    Returns a `ForumApi` instance, sharing the application HTTP session.
    """
    logger.debug("Using forum %s", config.base_url)
    return ForumApi(config)
