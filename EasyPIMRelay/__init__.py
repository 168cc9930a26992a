"""
EasyPIM Event Relay (Azure Function)

This function receives Azure Key Vault change notifications delivered by Event
Grid, answers Event Grid subscription validation handshakes, derives the
EasyPIM pipeline parameters from the changed secret's name, and triggers the
governance pipeline on either GitHub Actions or Azure DevOps.

Configuration is read from the Function App settings once per request; see
routing.RelayConfig, parameters.EnvironmentOverrides and credentials for the
variable names.
"""

import json
import logging
import os
from dataclasses import asdict
from typing import Mapping, Optional
from urllib.parse import urlsplit

import azure.functions as func

from . import events
from .credentials import resolve_credentials
from .dispatch import DispatchFailure, dispatch
from .errors import RelayError
from .parameters import EnvironmentOverrides, derive
from .routing import RelayConfig, route

PROCESSED_BODY = "Processed"
READY_BODY = "EasyPIM Event Relay is ready."
INTERNAL_ERROR_BODY = "Internal server error."

# Headers whose values are credentials and must not reach the logs
_REDACTED_HEADERS = {"authorization", "aeg-sas-key", "aeg-sas-token", "x-functions-key", "cookie"}
# Query parameters carrying the function key
_REDACTED_PARAMS = {"code"}


def _redact_headers(headers: Mapping[str, str]) -> dict:
    return {k: ("***" if k.lower() in _REDACTED_HEADERS else v) for k, v in headers.items()}


def _redact_params(params: Mapping[str, str]) -> dict:
    return {k: ("***" if k.lower() in _REDACTED_PARAMS else v) for k, v in params.items()}


def _url_without_query(url: str) -> str:
    # The query string is logged separately, redacted
    return urlsplit(url)._replace(query="", fragment="").geturl()


def _log_request(req: func.HttpRequest) -> bytes:
    """Log method, URL, params, headers and body; return the raw body."""
    try:
        raw_body = req.get_body() or b""
    except Exception as ex:
        logging.warning(f"Could not read request body: {ex}")
        raw_body = b""
    body_text = raw_body.decode("utf-8", errors="replace")

    headers_dict = _redact_headers(dict(req.headers)) if hasattr(req, "headers") else {}
    params_dict = _redact_params(dict(req.params)) if hasattr(req, "params") else {}
    request_url = _url_without_query(getattr(req, "url", "") or "")

    logging.info("Incoming HTTP request:")
    logging.info(f"    Method: {req.method}")
    logging.info(f"    URL: {request_url}")
    logging.info(f"    Headers: {headers_dict}")
    logging.info(f"    Query Params: {params_dict}")
    # Limit body logged length to prevent extremely large logs
    logging.info(f"    Body (first 20k chars): {body_text[:20000]}")
    return raw_body


def _is_dry_run(req: func.HttpRequest) -> bool:
    return (req.params.get("dryRun", "0") or "0").lower() in ("1", "true", "yes")


def handle(req: func.HttpRequest, environ: Optional[Mapping[str, str]] = None) -> func.HttpResponse:
    """Run the relay pipeline for one request.

    Order: CloudEvents OPTIONS handshake, GET readiness, parse, Event Grid
    validation handshake, settings snapshot, classify, derive, route,
    credentials, dispatch.
    """
    environ = os.environ if environ is None else environ
    try:
        raw_body = _log_request(req)

        options_resp = events.try_respond_options(req)
        if options_resp is not None:
            return options_resp

        if req.method and req.method.upper() == "GET":
            return func.HttpResponse(READY_BODY, status_code=200)

        event = events.parse(raw_body)

        # Handshakes need no settings or credentials
        handshake = events.try_respond(event)
        if handshake is not None:
            return handshake

        overrides = EnvironmentOverrides.from_environ(environ)
        config = RelayConfig.from_environ(environ)

        classification = events.classify(event)
        logging.info(
            f"Event {event.eventType} classified: secret={classification.secretName} "
            f"vault={classification.vaultName} source={classification.eventSource}"
        )

        params = derive(classification.secretName, overrides, vault_name=classification.vaultName)
        target = route(classification.secretName, config)
        logging.info(f"Routing secret {classification.secretName} to {target.platform}.")

        if _is_dry_run(req):
            plan = {
                "classification": classification.to_dict(),
                "parameters": params.to_dict(),
                "target": {"platform": target.platform, **asdict(target)},
            }
            return func.HttpResponse(json.dumps(plan), status_code=200, mimetype="application/json")

        credential = resolve_credentials(target, environ, timeout_seconds=config.timeout_seconds)
        result = dispatch(target, params, credential, timeout_seconds=config.timeout_seconds)

        if isinstance(result, DispatchFailure):
            # Acked anyway so Event Grid does not redeliver; monitoring keys on the marker
            logging.error(
                f"DISPATCH_FAILED platform={target.platform} secret={classification.secretName} "
                f"status={result.httpStatus} reason={result.reason}"
            )
        else:
            logging.info(f"Dispatch succeeded: runId={result.runId} url={result.url}")

        return func.HttpResponse(PROCESSED_BODY, status_code=200)

    except RelayError as err:
        logging.error(f"{type(err).__name__}: {err}")
        return func.HttpResponse(str(err), status_code=err.status_code)
    except Exception:
        logging.exception("Unhandled error.")
        return func.HttpResponse(INTERNAL_ERROR_BODY, status_code=500)


def main(req: func.HttpRequest) -> func.HttpResponse:
    """Azure Function entry point."""
    return handle(req)
