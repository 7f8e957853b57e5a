from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the rainfall service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def add_rainfall(self, amount: str, notes: Optional[str] = None) -> str:
        params = {"amount": amount}
        if notes is not None:
            params["notes"] = notes
        try:
            response = self._client.get("/addRainfall", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        payload = response.json()
        result = payload.get("result")
        if not isinstance(result, str):
            raise typer.BadParameter("Unexpected response payload when adding rainfall.")
        return result

    def get_summary(self, year: int) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/summaries/{year}")
            if response.status_code == 404:
                raise typer.BadParameter(f"No summary recorded for year {year}.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def get_record(self, record_id: str) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/records/{record_id}")
            if response.status_code == 404:
                raise typer.BadParameter(f"Record {record_id} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def update_record(self, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.patch(f"/records/{record_id}", json=changes)
            if response.status_code == 404:
                raise typer.BadParameter(f"Record {record_id} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def delete_record(self, record_id: str) -> None:
        try:
            response = self._client.delete(f"/records/{record_id}")
            if response.status_code == 404:
                raise typer.BadParameter(f"Record {record_id} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
