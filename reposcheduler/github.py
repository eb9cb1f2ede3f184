"""GitHub REST client: creates repositories and checks tokens."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import ExecutionError
from .logger import get_logger
from .models import Job
from .retry import RetryError, TransientHTTPError, exponential_backoff, should_retry_http_status

logger = get_logger()

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
ACCEPT_HEADER = "application/vnd.github.v3+json"


@dataclass
class ExecutionResult:
    """Outcome of one creation attempt. Exactly one of result_url / error is set."""

    result_url: Optional[str] = None
    github_id: Optional[int] = None
    error: Optional[ExecutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, result_url: str, github_id: Optional[int] = None) -> "ExecutionResult":
        return cls(result_url=result_url, github_id=github_id)

    @classmethod
    def failure(cls, error: ExecutionError) -> "ExecutionResult":
        return cls(error=error)


def build_payload(job: Job) -> Dict[str, Any]:
    """Request body for POST /user/repos."""
    body: Dict[str, Any] = {
        "name": job.name,
        "private": job.private,
        "auto_init": job.auto_init,
    }
    if job.description:
        body["description"] = job.description
    if job.gitignore_template:
        body["gitignore_template"] = job.gitignore_template
    return body


def error_message_from_response(resp: requests.Response) -> str:
    """Pull a readable message out of a GitHub error body.

    GitHub returns {"message": ..., "errors": [{"message": ...}]}; the nested
    entries carry the useful part for validation failures (e.g. name taken).
    """
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        message = str(data["message"])
        details = [
            str(e["message"]) for e in data.get("errors") or []
            if isinstance(e, dict) and e.get("message")
        ]
        if details:
            message = f"{message} ({'; '.join(details)})"
        return message
    return f"GitHub request failed ({resp.status_code})"


class RepositoryCreator:
    """
    Stateless executor for scheduled jobs.

    ``execute`` never raises for remote or transport failures and never
    touches the job; the scheduler applies the returned result.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        retry_delay: float = 1.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"token {token}",
            "Accept": ACCEPT_HEADER,
            "Content-Type": "application/json",
        }

    def execute(self, job: Job, token: str) -> ExecutionResult:
        url = f"{self.api_url}/user/repos"
        try:
            resp = self.session.post(
                url, json=build_payload(job), headers=self._headers(token), timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.warning("GitHub create request timed out", job_id=job.id, timeout=self.timeout)
            return ExecutionResult.failure(
                ExecutionError(f"GitHub request timed out after {self.timeout:g}s")
            )
        except requests.exceptions.RequestException as e:
            logger.error("GitHub create request error", job_id=job.id, error=str(e))
            return ExecutionResult.failure(ExecutionError(str(e)))

        if not 200 <= resp.status_code < 300:
            message = error_message_from_response(resp)
            logger.warning(
                "GitHub rejected repository creation",
                job_id=job.id, status=resp.status_code, error=message,
            )
            return ExecutionResult.failure(ExecutionError(message, status_code=resp.status_code))

        try:
            data = resp.json()
        except ValueError:
            data = {}
        html_url = data.get("html_url") if isinstance(data, dict) else None
        if not html_url:
            return ExecutionResult.failure(
                ExecutionError("GitHub response did not include html_url", status_code=resp.status_code)
            )
        return ExecutionResult.success(html_url, data.get("id"))

    def verify_token(self, token: str) -> str:
        """Return the GitHub login the token belongs to.

        Raises ExecutionError when GitHub rejects the token or stays unreachable.
        """
        url = f"{self.api_url}/user"

        @exponential_backoff(
            max_retries=2,
            base_delay=self.retry_delay,
            exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, TransientHTTPError),
            on_retry=lambda attempt, exc, delay: logger.warning(
                "Retrying token verification", attempt=attempt, error=str(exc), delay=delay
            ),
        )
        def _get_user():
            resp = self.session.get(url, headers=self._headers(token), timeout=self.timeout)
            if should_retry_http_status(resp.status_code):
                raise TransientHTTPError(resp.status_code)
            return resp

        try:
            resp = _get_user()
        except RetryError as e:
            raise ExecutionError(f"Could not reach GitHub: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ExecutionError(f"GitHub request error: {e}") from e

        if resp.status_code != 200:
            raise ExecutionError(error_message_from_response(resp), status_code=resp.status_code)
        return resp.json().get("login", "")
