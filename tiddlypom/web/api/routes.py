"""TiddlyWeb protocol routes.

See https://tiddlywiki.com/static/WebServer%2520API.html for the endpoints
the TiddlyWeb plugin expects.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import FileResponse, PlainTextResponse, RedirectResponse, Response
from starlette.concurrency import run_in_threadpool

from ...core.config import TiddlypomConfig
from ...core.models import Tiddler, User, ValidationError, format_etag
from ...storage.database import NotFoundError
from ...storage.tiddler_store import TiddlerStore
from ...storage.user_store import InvalidCredentialError, UserStore
from ..cache import EtagSeedCache

logger = logging.getLogger(__name__)

router = APIRouter()


class LoginRequired(Exception):
    """Raised when a protected route is hit without a valid session."""
    pass


def get_config(request: Request) -> TiddlypomConfig:
    """Get configuration from app state."""
    return request.app.state.config


def get_tiddler_store(request: Request) -> TiddlerStore:
    """Get tiddler store from app state."""
    return request.app.state.tiddler_store


def get_user_store(request: Request) -> UserStore:
    """Get user store from app state."""
    return request.app.state.user_store


def get_etag_cache(request: Request) -> EtagSeedCache:
    return request.app.state.etag_cache


def current_user(
    request: Request,
    config: TiddlypomConfig = Depends(get_config),
    users: UserStore = Depends(get_user_store),
) -> Optional[User]:
    """Resolve the user behind the remember cookie, if any."""
    token = request.cookies.get(config.auth.cookie_name)
    if not token:
        return None

    try:
        user = users.by_remember_token(token)
    except NotFoundError:
        logger.info("remember token not found")
        return None

    request.state.user = user
    return user


def require_user(user: Optional[User] = Depends(current_user)) -> User:
    """Require an authenticated session."""
    if user is None:
        raise LoginRequired()
    return user


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Check an If-None-Match header against an ETag.

    Uses weak comparison: ``W/"x"`` matches ``"x"``, and ``*`` matches
    anything.
    """
    if not if_none_match:
        return False

    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False


@router.get("/")
def wiki(
    request: Request,
    user: User = Depends(require_user),
    etag_cache: EtagSeedCache = Depends(get_etag_cache),
):
    """Serve the wiki file."""
    wiki_file: Path = request.app.state.wiki_file
    if not wiki_file.is_file():
        raise NotFoundError(f"wiki file not found: {wiki_file}")

    etag = f'"{etag_cache.value}"'
    if etag_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=304, headers={"ETag": etag})

    return FileResponse(wiki_file, media_type="text/html", headers={"ETag": etag})


@router.get("/status")
def status(
    user: User = Depends(require_user),
    config: TiddlypomConfig = Depends(get_config),
):
    """Report server status to the TiddlyWeb plugin."""
    return {
        "username": user.email,
        "anonymous": False,
        "read_only": False,
        "space": {"recipe": "default"},
        "tiddlywiki_version": config.server.tiddlywiki_version,
    }


@router.get("/recipes/default/tiddlers.json")
def list_tiddlers(
    user: User = Depends(require_user),
    store: TiddlerStore = Depends(get_tiddler_store),
):
    """List the skinny (text-less) tiddlers.

    Metadata is streamed out exactly as it was stored.
    """
    tiddlers = store.list()
    body = "[" + ",".join(t.meta_json for t in tiddlers) + "]"
    return Response(content=body, media_type="application/json")


@router.get("/recipes/default/tiddlers/{title:path}")
def get_tiddler(
    title: str,
    user: User = Depends(require_user),
    store: TiddlerStore = Depends(get_tiddler_store),
):
    """Get one tiddler with its text."""
    tiddler = store.get(title)
    return Response(content=json.dumps(tiddler.to_fields()), media_type="application/json")


@router.put("/recipes/default/tiddlers/{title:path}")
async def put_tiddler(
    title: str,
    request: Request,
    user: User = Depends(require_user),
    config: TiddlypomConfig = Depends(get_config),
    store: TiddlerStore = Depends(get_tiddler_store),
):
    """Create or update a tiddler and answer with its new ETag."""
    data = await request.body()
    try:
        fields = json.loads(data)
    except ValueError as e:
        raise ValidationError(f"cannot decode tiddler: {e}")

    tiddler = Tiddler.from_fields(title, fields)
    stored = await run_in_threadpool(store.upsert, title, tiddler)

    digest = None
    if config.server.etag_content_digest:
        digest = hashlib.md5(data).hexdigest()

    return Response(
        status_code=204,
        headers={"Etag": format_etag(title, stored.revision, digest)},
    )


@router.delete("/bags/default/tiddlers/{title:path}", status_code=204)
@router.delete("/bags/bag/tiddlers/{title:path}", status_code=204)
def delete_tiddler(
    title: str,
    user: User = Depends(require_user),
    store: TiddlerStore = Depends(get_tiddler_store),
):
    """Delete a tiddler. Missing tiddlers get the same answer."""
    store.delete(title)
    return Response(status_code=204)


@router.get("/login/")
def login_form(request: Request):
    """Render the login page."""
    templates = request.app.state.templates
    return templates.TemplateResponse(request, "login.html", {"title": "Login"})


@router.post("/login/")
def login(
    email: str = Form(""),
    password: str = Form(""),
    config: TiddlypomConfig = Depends(get_config),
    users: UserStore = Depends(get_user_store),
):
    """Log in and set the remember cookie.

    Unknown emails and wrong passwords get the same bare 401.
    """
    if not email:
        raise ValidationError("Email address is required.")
    if not password:
        raise ValidationError("Password is required.")

    try:
        user = users.authenticate(email, password)
    except (NotFoundError, InvalidCredentialError) as e:
        logger.info(f"Login failed: {e}")
        return PlainTextResponse("Unauthorized", status_code=401)

    token = users.create_remember_token(user)
    logger.info(f"User {user.email} logged in")

    response = RedirectResponse("/", status_code=302)
    response.set_cookie(
        config.auth.cookie_name,
        token,
        max_age=config.auth.cookie_max_age_days * 24 * 60 * 60,
        path="/",
        httponly=True,
    )
    return response


@router.get("/logout/")
def logout(
    request: Request,
    config: TiddlypomConfig = Depends(get_config),
    users: UserStore = Depends(get_user_store),
):
    """Forget the remember token and clear the cookie."""
    token = request.cookies.get(config.auth.cookie_name)
    if token:
        users.clear_remember_token(token)

    response = RedirectResponse("/login/", status_code=302)
    response.delete_cookie(config.auth.cookie_name, path="/")
    return response
