import json

import pytest

from matrixci.github import APIError, GitHubReleaseClient


@pytest.fixture
def asset(tmp_path):
    f = tmp_path / "copycat.exe"
    f.write_bytes(b"MZ")
    return f


def test_create_release_uploads_each_asset(monkeypatch, asset):
    client = GitHubReleaseClient("owner/copycat", "token")
    calls = []

    def fake_request(method, url, data=None, content_type="application/json"):
        calls.append((method, url))
        if url.endswith("/releases"):
            return {
                "id": 1,
                "upload_url": "https://uploads.github.com/repos/owner/copycat/releases/1/assets{?name,label}",
                "html_url": "https://github.com/owner/copycat/releases/tag/v1.0.0",
            }
        return {}

    monkeypatch.setattr(client, "_request", fake_request)
    assert client.create_release("v1.0.0", [asset])
    assert calls == [
        ("POST", "/repos/owner/copycat/releases"),
        ("POST", "https://uploads.github.com/repos/owner/copycat/releases/1/assets?name=copycat.exe"),
        ("PATCH", "/repos/owner/copycat/releases/1"),
    ]


def test_failed_upload_deletes_the_draft(monkeypatch, asset, tmp_path):
    second = tmp_path / "copycat"
    second.write_bytes(b"ELF")
    client = GitHubReleaseClient("owner/copycat", "token")
    calls = []

    def fake_request(method, url, data=None, content_type="application/json"):
        calls.append((method, url))
        if url.endswith("/releases"):
            assert json.loads(data)["draft"] is True
            return {"id": 7, "upload_url": "https://uploads.github.com/repos/owner/copycat/releases/7/assets{?name,label}"}
        if url.endswith("name=copycat"):
            raise APIError("API request failed: 502 Bad Gateway", status=502)
        return {}

    monkeypatch.setattr(client, "_request", fake_request)
    assert not client.create_release("v1.0.0", [asset, second])
    assert ("DELETE", "/repos/owner/copycat/releases/7") in calls
    assert not any(method == "PATCH" for method, _url in calls)


def test_unreadable_asset_deletes_the_draft(monkeypatch, tmp_path):
    client = GitHubReleaseClient("owner/copycat", "token")
    calls = []

    def fake_request(method, url, data=None, content_type="application/json"):
        calls.append((method, url))
        return {"id": 3, "upload_url": "https://uploads.example/assets{?name}"}

    monkeypatch.setattr(client, "_request", fake_request)
    assert not client.create_release("v1.0.0", [tmp_path / "missing"])
    assert calls[-1] == ("DELETE", "/repos/owner/copycat/releases/3")


def test_api_failure_is_a_refused_release(monkeypatch, asset):
    client = GitHubReleaseClient("owner/copycat", "token")

    def fail(*args, **kwargs):
        raise APIError("API request failed: 422 Unprocessable Entity", status=422)

    monkeypatch.setattr(client, "_request", fail)
    assert not client.create_release("v1.0.0", [asset])


def test_repository_must_be_owner_slash_name():
    with pytest.raises(ValueError):
        GitHubReleaseClient("copycat", "token")
