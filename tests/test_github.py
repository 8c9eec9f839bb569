import asyncio

import httpx
import pytest

from api.app.github import GitHubClient, extract_readme_summary

README = """<!-- badges -->
<p align="center"><img src="logo.png"></p>

# Widget

![build](https://ci.example.com/badge.svg)

A **fast** widget toolkit for [terminals](https://example.com/terms).

```bash
pip install widget
```

Use `widget run` to start.
---
https://example.com
"""


def test_extract_readme_summary_strips_markup():
    summary = extract_readme_summary(README)
    assert summary == "Widget A **fast** widget toolkit for terminals. Use to start."


def test_extract_readme_summary_truncates():
    summary = extract_readme_summary("word " * 200, max_length=20)
    assert summary.endswith("...")
    assert len(summary) <= 23


def test_extract_readme_summary_empty():
    assert extract_readme_summary("") == ""


def _fetch(handler, full_name="acme/widget"):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            return await GitHubClient(http, asyncio.Semaphore(1)).fetch_readme_summary(full_name)

    return asyncio.run(run())


def test_fetch_readme_summary(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, text="# Widget\n\nMakes widgets.")

    assert _fetch(handler) == "Widget Makes widgets."
    assert seen["url"] == "https://api.github.com/repos/acme/widget/readme"
    assert seen["auth"] == "Bearer ghp_test"


def test_fetch_readme_missing_is_empty():
    assert _fetch(lambda request: httpx.Response(404, json={"message": "Not Found"})) == ""


def test_fetch_readme_bad_token():
    with pytest.raises(ValueError):
        _fetch(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))
