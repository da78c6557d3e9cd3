"""Tests for the TiddlyWeb HTTP interface."""

import hashlib
import json
import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

from tiddlypom.core.config import TiddlypomConfig
from tiddlypom.storage.database import StorageError
from tiddlypom.web.server import create_app

from .conftest import EMAIL, PASSWORD, PEPPER

COOKIE = "tiddlywiki-remember"


@pytest.fixture
def config():
    config = TiddlypomConfig()
    config.auth.pepper = PEPPER
    return config


@pytest.fixture
def app(config, tiddler_store, user_store, temp_project):
    return create_app(config, tiddler_store, user_store, temp_project / "index.html")


@pytest.fixture
def client(app):
    """Anonymous client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_client(client, user_store):
    """Client holding a valid remember cookie."""
    token = user_store.create_remember_token(user_store.by_email(EMAIL))
    client.cookies.set(COOKIE, token)
    return client


def put(client, title, fields):
    return client.put(f"/recipes/default/tiddlers/{title}", content=json.dumps(fields))


class TestLogin:
    """Test cases for login and logout."""

    def test_login_page(self, client):
        response = client.get("/login/")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert 'name="email"' in response.text
        assert 'name="password"' in response.text

    def test_login_sets_cookie(self, client, user_store):
        response = client.post(
            "/login/",
            data={"email": EMAIL, "password": PASSWORD},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/"

        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{COOKIE}=")
        assert "HttpOnly" in cookie
        assert "Path=/" in cookie
        assert "Max-Age=31536000" in cookie

        [token] = user_store.list_tokens()
        assert token.email == EMAIL
        assert client.get("/status").status_code == 200

    def test_login_requires_email(self, client):
        response = client.post("/login/", data={"password": PASSWORD})

        assert response.status_code == 400
        assert "Email address is required." in response.text

    def test_login_requires_password(self, client):
        response = client.post("/login/", data={"email": EMAIL})

        assert response.status_code == 400
        assert "Password is required." in response.text

    def test_failed_logins_look_alike(self, client, user_store):
        wrong_password = client.post("/login/", data={"email": EMAIL, "password": "nope"})
        unknown_user = client.post(
            "/login/", data={"email": "nobody@site.com", "password": PASSWORD}
        )

        assert wrong_password.status_code == 401
        assert unknown_user.status_code == 401
        assert wrong_password.text == unknown_user.text
        assert "set-cookie" not in wrong_password.headers
        assert user_store.list_tokens() == []

    def test_logout(self, auth_client, user_store):
        [token] = user_store.list_tokens()

        response = auth_client.get("/logout/", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/login/"
        assert user_store.list_tokens() == []

        auth_client.cookies.set(COOKIE, token.remember_token)
        assert auth_client.get("/status", follow_redirects=False).status_code == 302

    def test_logout_without_cookie(self, client):
        response = client.get("/logout/", follow_redirects=False)
        assert response.status_code == 302


class TestAccessControl:
    """Test cases for unauthenticated access."""

    @pytest.mark.parametrize("method,path", [
        ("GET", "/"),
        ("GET", "/status"),
        ("GET", "/recipes/default/tiddlers.json"),
        ("GET", "/recipes/default/tiddlers/Foo"),
        ("PUT", "/recipes/default/tiddlers/Foo"),
        ("DELETE", "/bags/default/tiddlers/Foo"),
        ("DELETE", "/bags/bag/tiddlers/Foo"),
    ])
    def test_redirects_to_login(self, client, tiddler_store, method, path):
        response = client.request(method, path, content="{}", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/login/"
        assert tiddler_store.count() == (0, 0)

    def test_unknown_token(self, client):
        client.cookies.set(COOKIE, "forged")
        response = client.get("/status", follow_redirects=False)
        assert response.status_code == 302


class TestWiki:
    """Test cases for serving the wiki file."""

    def test_serves_wiki_with_etag(self, auth_client, app):
        response = auth_client.get("/")

        assert response.status_code == 200
        assert "wiki" in response.text
        assert response.headers["etag"] == f'"{app.state.etag_cache.value}"'

    def test_not_modified(self, auth_client):
        etag = auth_client.get("/").headers["etag"]

        response = auth_client.get("/", headers={"If-None-Match": etag})

        assert response.status_code == 304

    @pytest.mark.parametrize("header", [
        "W/{etag}",
        '"other", {etag}',
        '"other",W/{etag} ',
        "*",
    ])
    def test_not_modified_tag_lists(self, auth_client, header):
        etag = auth_client.get("/").headers["etag"]

        response = auth_client.get("/", headers={"If-None-Match": header.format(etag=etag)})

        assert response.status_code == 304

    @pytest.mark.parametrize("header", ['"stale"', '"stale", W/"older"', ""])
    def test_stale_etag(self, auth_client, header):
        response = auth_client.get("/", headers={"If-None-Match": header})
        assert response.status_code == 200

    def test_missing_wiki_file(self, auth_client, temp_project):
        (temp_project / "index.html").unlink()
        assert auth_client.get("/").status_code == 404


class TestTiddlers:
    """Test cases for the tiddler endpoints."""

    def test_status(self, auth_client):
        response = auth_client.get("/status")

        assert response.status_code == 200
        assert response.json() == {
            "username": EMAIL,
            "anonymous": False,
            "read_only": False,
            "space": {"recipe": "default"},
            "tiddlywiki_version": "5.1.23",
        }

    def test_put_returns_etag(self, auth_client):
        response = put(auth_client, "Foo", {"title": "Foo", "text": "hello"})

        assert response.status_code == 204
        assert response.headers["etag"] == '"default/Foo/1:"'

        response = put(auth_client, "Foo", {"title": "Foo", "text": "again"})
        assert response.headers["etag"] == '"default/Foo/2:"'

    def test_put_escapes_title_in_etag(self, auth_client):
        response = put(auth_client, "My%20Tiddler", {"title": "My Tiddler"})
        assert response.headers["etag"] == '"default/My+Tiddler/1:"'

    def test_put_with_content_digest(self, auth_client, config):
        config.server.etag_content_digest = True
        body = json.dumps({"title": "Foo", "text": "hello"})

        response = auth_client.put("/recipes/default/tiddlers/Foo", content=body)

        digest = hashlib.md5(body.encode()).hexdigest()
        assert response.headers["etag"] == f'"default/Foo/1:{digest}"'

    @pytest.mark.parametrize("body", ["{not json", "[1, 2]", '{"text": 5}'])
    def test_put_rejects_bad_body(self, auth_client, tiddler_store, body):
        response = auth_client.put("/recipes/default/tiddlers/Foo", content=body)

        assert response.status_code == 400
        assert tiddler_store.count() == (0, 0)

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_put_rejects_non_finite_numbers(self, auth_client, value):
        put(auth_client, "Bar", {"title": "Bar"})
        body = '{"title": "Foo", "x": %s, "text": "hi"}' % value

        response = auth_client.put("/recipes/default/tiddlers/Foo", content=body)

        assert response.status_code == 400
        listing = auth_client.get("/recipes/default/tiddlers.json")
        tiddlers = json.loads(listing.text, parse_constant=pytest.fail)
        assert [t["title"] for t in tiddlers] == ["Bar"]

    def test_get(self, auth_client):
        put(auth_client, "Foo", {"title": "Foo", "tags": "a", "text": "hello"})

        response = auth_client.get("/recipes/default/tiddlers/Foo")

        assert response.status_code == 200
        assert response.json() == {
            "title": "Foo",
            "tags": "a",
            "text": "hello",
            "bag": "bag",
            "revision": 1,
        }

    def test_get_system_title(self, auth_client):
        put(auth_client, "%24%3A%2FStoryList", {"title": "$:/StoryList", "list": "Foo"})

        response = auth_client.get("/recipes/default/tiddlers/$:/StoryList")

        assert response.status_code == 200
        assert response.json()["list"] == "Foo"

    def test_get_missing(self, auth_client):
        response = auth_client.get("/recipes/default/tiddlers/Nope")

        assert response.status_code == 404
        assert response.text == "Not Found"

    def test_list(self, auth_client):
        put(auth_client, "Foo", {"title": "Foo", "text": "hello"})
        put(auth_client, "$:/StoryList", {"title": "$:/StoryList"})
        put(auth_client, "$:/themes/tiddlywiki/vanilla", {"title": "$:/themes/tiddlywiki/vanilla"})

        response = auth_client.get("/recipes/default/tiddlers.json")

        assert response.status_code == 200
        tiddlers = response.json()
        titles = sorted(t["title"] for t in tiddlers)
        assert titles == ["$:/themes/tiddlywiki/vanilla", "Foo"]
        assert all("text" not in t for t in tiddlers)
        assert all(t["revision"] == 1 for t in tiddlers)

    def test_list_empty(self, auth_client):
        assert auth_client.get("/recipes/default/tiddlers.json").json() == []

    @pytest.mark.parametrize("bag", ["default", "bag"])
    def test_delete(self, auth_client, bag):
        put(auth_client, "Foo", {"title": "Foo"})

        response = auth_client.delete(f"/bags/{bag}/tiddlers/Foo")

        assert response.status_code == 204
        assert auth_client.get("/recipes/default/tiddlers/Foo").status_code == 404

    def test_delete_missing(self, auth_client):
        assert auth_client.delete("/bags/default/tiddlers/Nope").status_code == 204


class TestErrors:
    """Test cases for internal error reporting."""

    def test_authenticated_user_sees_detail(self, auth_client, tiddler_store):
        with patch.object(tiddler_store, "get", side_effect=StorageError("disk on fire")):
            response = auth_client.get("/recipes/default/tiddlers/Foo")

        assert response.status_code == 500
        assert "disk on fire" in response.text

    def test_anonymous_user_sees_no_detail(self, client, user_store):
        user_store.users_path.write_text("{broken")

        response = client.post("/login/", data={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 500
        assert response.text == "Internal Server Error"


if __name__ == "__main__":
    pytest.main([__file__])
