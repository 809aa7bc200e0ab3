"""Google Sheets implementation of the remote tabular store.

Talks to the Sheets v4 values API over httpx and turns every
transport or HTTP failure into ``RemoteUnavailableError``.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from core.constants import DEFAULT_REMOTE_TIMEOUT_SECONDS, SHEETS_API_BASE_URL
from core.errors import RemoteUnavailableError


class GoogleSheetsTabularStore:
    """Read and write cell ranges of one spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        token: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT_SECONDS,
    ) -> None:
        self._values_url = f"{SHEETS_API_BASE_URL}/{spreadsheet_id}/values"
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def read(self, range_spec: str) -> list[list[Any]]:
        """Return the cell values of a range; empty ranges yield ``[]``."""
        payload = await self._request("GET", range_spec)
        values = payload.get("values", [])
        return [list(row) for row in values]

    async def write(self, range_spec: str, values: list[list[Any]]) -> None:
        """Overwrite a range with raw (unparsed) cell values."""
        await self._request(
            "PUT",
            range_spec,
            params={"valueInputOption": "RAW"},
            json={"range": range_spec, "majorDimension": "ROWS", "values": values},
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(self, method: str, range_spec: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._values_url}/{quote(range_spec, safe='')}"
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as error:
            raise RemoteUnavailableError(
                f"Sheets API {method} {range_spec} failed with status "
                f"{error.response.status_code}. Check the spreadsheet id and token."
            ) from error
        except (httpx.HTTPError, ValueError) as error:
            raise RemoteUnavailableError(
                f"Sheets API {method} {range_spec} failed: {error}."
            ) from error
        return payload if isinstance(payload, dict) else {}
