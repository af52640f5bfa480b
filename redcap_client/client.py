from __future__ import annotations

import json
import logging
import tempfile
from typing import IO, Any, Dict, List, Mapping, Optional, Sequence, Union

import requests

from .cache import ResponseCache, cache_enabled_from_env
from .configuration import (
    Configuration,
    get_default_configuration,
    set_default_configuration,
)


logger = logging.getLogger(__name__)

FILE_CHUNK_SIZE = 8192
RECORD_ID_FIELD = "record_id"

Payload = Dict[str, Any]
RequestOptions = Optional[Mapping[str, Any]]


class RedcapError(RuntimeError):
    """Base class for errors raised by the REDCap client."""


class ConfigurationError(RedcapError):
    """Raised when a request is attempted without any configuration."""


class TransportError(RedcapError):
    """Raised when the HTTP request fails or the server answers with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseParseError(RedcapError, ValueError):
    """Raised when a JSON response body cannot be decoded."""


class RedcapClient:
    """
    Thin wrapper around the REDCap API endpoint.

    Every operation builds a flat form payload, POSTs it to
    ``configuration.host`` and returns the parsed JSON (or text, or a file
    object for file exports).  ``request_options`` on every operation is merged
    into the payload last, so any API parameter not modelled here can still be
    sent.
    """

    def __init__(
        self,
        configuration: Optional[Configuration] = None,
        *,
        log: bool = False,
        cache: Optional[bool] = None,
    ) -> None:
        self._configuration = configuration
        self.log = log
        self.response_code: Optional[int] = None
        if cache is None:
            cache = cache_enabled_from_env()
        self.cache: Optional[ResponseCache] = ResponseCache() if cache else None

    @property
    def configuration(self) -> Optional[Configuration]:
        if self._configuration is not None:
            return self._configuration
        return get_default_configuration()

    def _require_configuration(self) -> Configuration:
        configuration = self.configuration
        if configuration is None:
            raise ConfigurationError(
                "REDCap client is not configured. Pass a Configuration or call "
                "set_default_configuration() before making requests."
            )
        return configuration

    def project(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload("project", request_options=request_options)
        return self.post(payload)

    def user(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload("user", request_options=request_options)
        return self.post(payload)

    def project_xml(self, *, request_options: RequestOptions = None) -> IO[bytes]:
        payload = self.build_payload("project_xml", request_options=request_options)
        return self.post_file_request(payload)

    def metadata(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload(
            "metadata", fields=[], request_options=request_options
        )
        return self.post(payload)

    def instrument(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload("instrument", request_options=request_options)
        return self.post(payload)

    def form_event_mapping(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload(
            "formEventMapping", request_options=request_options
        )
        return self.post(payload)

    def export_field_names(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload(
            "exportFieldNames", request_options=request_options
        )
        return self.post(payload)

    def records(
        self,
        records: Optional[Sequence[Any]] = None,
        fields: Optional[Sequence[str]] = None,
        filter: Optional[str] = None,
        *,
        request_options: RequestOptions = None,
    ) -> Any:
        """
        Export records.

        Args:
            records: Record ids to export; all records when empty.
            fields: Field names to export. ``record_id`` is always added when
                any field is requested so the rows stay identifiable.
            filter: REDCap logic expression sent as ``filterLogic``.
            request_options: Extra payload keys, merged last.
        """

        fields = list(fields or [])
        if fields:
            fields = list(dict.fromkeys([*fields, RECORD_ID_FIELD]))
        payload = self.build_payload(
            "record",
            records=records,
            fields=fields,
            filter=filter,
            request_options=request_options,
        )
        return self.post(payload)

    def survey_link(
        self,
        instrument: Optional[str] = None,
        record_id: Any = None,
        *,
        request_options: RequestOptions = None,
    ) -> str:
        """Return the survey URL for a record; the body is plain text, not JSON."""

        options: Dict[str, Any] = {
            "instrument": instrument,
            "record": "" if record_id is None else str(record_id),
        }
        options.update(request_options or {})
        payload = self.build_payload("surveyLink", request_options=options)
        return self.post(payload, raw=True)

    def participant_list(
        self,
        instrument: Optional[str] = None,
        event: Optional[str] = None,
        *,
        request_options: RequestOptions = None,
    ) -> Any:
        options: Dict[str, Any] = {"instrument": instrument, "event": event}
        options.update(request_options or {})
        payload = self.build_payload("participantList", request_options=options)
        return self.post(payload)

    def arm(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload("arm", request_options=request_options)
        return self.post(payload)

    def event(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload("event", request_options=request_options)
        return self.post(payload)

    def repeating_forms_events(self, *, request_options: RequestOptions = None) -> Any:
        payload = self.build_payload(
            "repeatingFormsEvents", request_options=request_options
        )
        return self.post(payload)

    def file(
        self,
        record_id: Any,
        field_name: str,
        event: Optional[str] = None,
        *,
        request_options: RequestOptions = None,
    ) -> IO[bytes]:
        """Download the file stored in ``field_name`` of a record."""

        options: Dict[str, Any] = {"field": field_name, "record": record_id}
        if event:
            options["event"] = event
        options.update(request_options or {})
        payload = self.build_payload("file", action="export", request_options=options)
        return self.post_file_request(payload)

    def max_id(self) -> int:
        """Highest numeric ``record_id`` in the project, 0 when there is none."""

        rows = self.records(fields=[RECORD_ID_FIELD])
        numbers = [
            number
            for row in rows or []
            for number in map(self._to_int, row.values())
            if number is not None
        ]
        return max(numbers, default=0)

    def fields(self) -> List[str]:
        return [entry["field_name"] for entry in self.metadata()]

    def update(self, data: Any = None, *, request_options: RequestOptions = None) -> bool:
        """
        Import records, overwriting existing values.

        Returns:
            ``True`` when the server reports exactly one record updated.
        """

        payload = self._import_payload(data, "count", request_options)
        self.flush_cache()
        result = self.post(payload, cached=False)
        return isinstance(result, Mapping) and result.get("count") == 1

    def create(self, data: Any = None, *, request_options: RequestOptions = None) -> Any:
        """Import new records and return the ids reported by the server."""

        payload = self._import_payload(data, "ids", request_options)
        self.flush_cache()
        return self.post(payload, cached=False)

    def delete(self, ids: Any, *, request_options: RequestOptions = None) -> Any:
        # Anything other than a non-empty list of ids is ignored without a request.
        if not isinstance(ids, (list, tuple)) or not ids:
            logger.debug("Skipping REDCap delete, no record ids given: %r", ids)
            return None

        payload = self.build_payload(
            "record", records=ids, action="delete", request_options=request_options
        )
        self.flush_cache()
        return self.post(payload, cached=False)

    def build_payload(
        self,
        content: str,
        records: Optional[Sequence[Any]] = None,
        fields: Optional[Sequence[str]] = None,
        filter: Optional[str] = None,
        action: Optional[str] = None,
        request_options: RequestOptions = None,
    ) -> Payload:
        configuration = self._require_configuration()
        payload: Payload = {
            "token": configuration.token,
            "format": configuration.format,
            "content": content,
        }
        if action is not None:
            payload["action"] = action
        for index, record in enumerate(records or []):
            payload[f"records[{index}]"] = record
        for index, field_name in enumerate(fields or []):
            payload[f"fields[{index}]"] = field_name
        if filter is not None:
            payload["filterLogic"] = filter
        if request_options:
            payload.update(request_options)
        return payload

    def _import_payload(
        self, data: Any, return_content: str, request_options: RequestOptions
    ) -> Payload:
        configuration = self._require_configuration()
        payload: Payload = {
            "token": configuration.token,
            "format": configuration.format,
            "content": "record",
            "overwriteBehavior": "normal",
            "type": "flat",
            "returnContent": return_content,
            "data": json.dumps([] if data is None else data),
        }
        if request_options:
            payload.update(request_options)
        return payload

    def post(self, payload: Payload, raw: bool = False, cached: bool = True) -> Any:
        """
        POST ``payload`` and interpret the response.

        Args:
            payload: Form fields to send.
            raw: Return the body as text instead of parsing JSON. Applies to
                this call only.
            cached: Allow the response cache to answer and store this call.

        Raises:
            TransportError: The request failed or returned status >= 400.
            ResponseParseError: ``raw`` is false and the body is not JSON.
        """

        configuration = self._require_configuration()
        key = None
        if cached and self.cache is not None:
            key = ResponseCache.key_for(payload, raw=raw)
            if key in self.cache:
                self._log("REDCap cache hit for %s", self._loggable(payload))
                self.response_code = self.cache.status_code(key)
                return self.cache.get(key)

        self._log(
            "REDCap POST to %s with %s", configuration.host, self._loggable(payload)
        )
        response = self._send(configuration, payload)

        if raw:
            result: Any = response.text or ""
        else:
            try:
                result = response.json()
            except ValueError as exc:
                raise ResponseParseError(
                    f"REDCap response is not JSON: {exc}"
                ) from exc

        self._log("Response: %s", result)
        if key is not None:
            self.cache.set(key, result, status_code=self.response_code)
        return result

    def post_file_request(self, payload: Payload) -> IO[bytes]:
        """POST ``payload`` and return the body as a temporary file opened at offset 0."""

        configuration = self._require_configuration()
        self._log(
            "REDCap POST for file field to %s with %s",
            configuration.host,
            self._loggable(payload),
        )
        response = self._send(configuration, payload, stream=True)

        handle = tempfile.TemporaryFile()
        try:
            for chunk in response.iter_content(chunk_size=FILE_CHUNK_SIZE):
                if chunk:
                    handle.write(chunk)
        except requests.RequestException as exc:
            handle.close()
            raise TransportError(f"HTTP error while reading REDCap file: {exc}") from exc
        finally:
            response.close()
        handle.seek(0)
        self._log("File: %s", handle)
        return handle

    def flush_cache(self) -> int:
        if self.cache is None:
            return 0
        dropped = self.cache.flush()
        self._log("Flushed %d cached REDCap responses", dropped)
        return dropped

    def _send(
        self, configuration: Configuration, payload: Payload, stream: bool = False
    ) -> requests.Response:
        kwargs: Dict[str, Any] = {"data": payload, "timeout": configuration.timeout}
        if stream:
            kwargs["stream"] = True
        try:
            response = requests.post(configuration.host, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"HTTP error for {configuration.host}: {exc}") from exc

        self.response_code = response.status_code
        if response.status_code >= 400:
            snippet = self._safe_response_snippet(response)
            response.close()
            raise TransportError(
                f"{configuration.host} returned {response.status_code}: {snippet}",
                status_code=response.status_code,
            )
        return response

    def _log(self, message: str, *args: Any) -> None:
        if not self.log:
            return
        configuration = self.configuration
        if configuration is None:
            logger.debug(message, *args)
            return
        configuration.logger.log(configuration.resolved_log_level, message, *args)

    @staticmethod
    def _loggable(payload: Payload) -> Payload:
        masked = dict(payload)
        if masked.get("token"):
            masked["token"] = "***"
        return masked

    @staticmethod
    def _safe_response_snippet(response: requests.Response) -> str:
        text = (response.text or "").strip()
        return text[:280].replace("\n", " ") if text else "no response body"

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            pass
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            return None


def create_client(
    options: Union[Configuration, Mapping[str, Any], None] = None,
    *,
    log: bool = False,
    cache: Optional[bool] = None,
) -> RedcapClient:
    """
    Convenience factory mirroring the module-level setup most scripts want.

    With no ``options`` the host and token come from ``REDCAP_HOST`` and
    ``REDCAP_TOKEN`` (a ``.env`` file is honoured).  The configuration becomes
    the process default and the returned client is bound to it.
    """

    if isinstance(options, Configuration):
        configuration = options
    elif options:
        configuration = Configuration.from_options(options)
    else:
        configuration = Configuration.from_env()
    set_default_configuration(configuration)
    return RedcapClient(configuration, log=log, cache=cache)
