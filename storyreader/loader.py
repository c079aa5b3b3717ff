"""
Article Loader

Fetches article JSON from the content API or reads it from disk.
Every failure is raised as ArticleLoadError with a message suitable for
showing to the user.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

from storyreader.exceptions import ArticleLoadError
from storyreader.models import Article
from storyreader.utils import logger
from storyreader.utils.config import config


class ArticleLoader:
    """Loads articles by id, URL or local file."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        cookie: Optional[str] = None,
        asset_base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url or config.loader_base_url
        self.endpoint = endpoint or config.loader_endpoint
        self.timeout = timeout if timeout is not None else config.loader_timeout
        self.asset_base_url = asset_base_url or config.asset_base_url
        self.session = session or requests.Session()

        cookie = cookie if cookie is not None else config.loader_cookie
        if cookie:
            self.session.headers["Cookie"] = cookie

    def article_url(self, article_id: Union[int, str]) -> str:
        base = self.base_url if self.base_url.endswith("/") else self.base_url + "/"
        return f"{base}{self.endpoint.lstrip('/')}?aid={article_id}"

    def fetch_json(self, url: str) -> Dict[str, Any]:
        """GET a URL and return the decoded JSON body."""
        logger.debug(f"GET {url}")
        try:
            res = self.session.get(url, timeout=self.timeout)
            res.raise_for_status()
        except requests.RequestException as e:
            raise ArticleLoadError(f"Could not download article: {e}") from e

        try:
            return res.json()
        except ValueError as e:
            raise ArticleLoadError(f"Server returned invalid JSON: {e}") from e

    def fetch(self, article_id: Union[int, str]) -> Article:
        """Fetch an article from the content API by id."""
        return Article.from_dict(
            self.fetch_json(self.article_url(article_id)),
            asset_base_url=self.asset_base_url,
        )

    def load_file(self, path: Union[str, Path]) -> Article:
        """
        Read an article saved as JSON.

        Relative asset paths are resolved against the file's directory,
        so an article saved next to its audio plays offline.
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ArticleLoadError(f"Could not read {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ArticleLoadError(f"Invalid JSON in {path}: {e}") from e

        return Article.from_dict(data, asset_base_url=str(path.resolve().parent))

    def load(self, source: str) -> Article:
        """Load from a local file, an article id or an http(s) URL."""
        if Path(source).expanduser().is_file():
            return self.load_file(Path(source).expanduser())
        if source.isdigit():
            return self.fetch(source)
        if source.startswith(("http://", "https://")):
            return Article.from_dict(self.fetch_json(source), asset_base_url=self.asset_base_url)
        raise ArticleLoadError(f"Not a file, article id or URL: {source}")

    def save(self, article_id: Union[int, str], output: Union[str, Path]) -> Article:
        """Fetch an article and write it to disk as JSON."""
        article = self.fetch(article_id)
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(article.to_dict(), f, ensure_ascii=False, indent=2)
        return article
