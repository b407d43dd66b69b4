from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import unquote_plus

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import PlainTextResponse

from chain_sources import ChainNotFoundError, SourceError, SourceRegistry
from common.logging_setup import get_logger, setup_logging
from common.types import DEFAULT_GLYPHS, Palette
from common.utils import parse_chain_id, parse_token_id
from token_server.config import ServerConfig, load_config
from token_server.formatting import format_metadata_as_text


log = get_logger(__name__)

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _bad_request(msg: str) -> PlainTextResponse:
    return PlainTextResponse(msg, status_code=400)


def query_unescape(value: str) -> str:
    """
    Query-string unescape: "+" is a space, "%XX" a byte. A "%" without two
    hex digits or bytes that are not UTF-8 raise ValueError.
    """
    if _BAD_ESCAPE.search(value):
        raise ValueError(f"invalid escape in {value!r}")
    return unquote_plus(value, errors="strict")


def palette_from_params(values: List[Optional[str]]) -> Palette:
    """
    c0..c4 query values -> Palette. Each value gets one more round of
    query unescaping; empty or undecodable values fall back to the default glyph.
    """
    toks = []
    for i, raw in enumerate(values):
        if not raw:
            toks.append(DEFAULT_GLYPHS[i])
            continue
        try:
            toks.append(query_unescape(raw))
        except ValueError:
            log.debug("Palette value c%d is not decodable, using default", i)
            toks.append(DEFAULT_GLYPHS[i])
    return Palette.with_overrides(toks)


def create_app(config: Optional[ServerConfig] = None, registry: Optional[SourceRegistry] = None) -> FastAPI:
    """
    Build the HTTP app. Without `registry`, one is created from `config`
    (or from the environment) at startup and closed at shutdown.
    """
    owns_registry = registry is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.registry is None:
            cfg = config or load_config()
            app.state.registry = SourceRegistry(cfg.chains)
        reg: SourceRegistry = app.state.registry
        log.info("Configured %d chain(s): %s", len(reg.chain_ids()), reg.chain_ids())
        try:
            yield
        finally:
            if owns_registry:
                reg.close()
                app.state.registry = None

    app = FastAPI(title="ERC721 Metadata Text Viewer", version="1.0.0", lifespan=lifespan)
    app.state.registry = registry

    @app.get("/health")
    def health():
        reg: Optional[SourceRegistry] = app.state.registry
        return {"status": "ok", "chains": reg.chain_ids() if reg else []}

    @app.get("/{chain_id}/{token_id}")
    def token_text(
        chain_id: str,
        token_id: str,
        c0: Optional[str] = Query(None),
        c1: Optional[str] = Query(None),
        c2: Optional[str] = Query(None),
        c3: Optional[str] = Query(None),
        c4: Optional[str] = Query(None),
    ):
        try:
            cid = parse_chain_id(chain_id)
        except ValueError as e:
            return _bad_request(f"Invalid chain ID: {e}")
        try:
            tid = parse_token_id(token_id)
        except ValueError as e:
            return _bad_request(f"Invalid token ID: {e}")

        palette = palette_from_params([c0, c1, c2, c3, c4])

        reg: SourceRegistry = app.state.registry
        try:
            source = reg.resolve(cid)
        except ChainNotFoundError as e:
            log.warning("Error getting source for chain %d: %s", cid, e)
            return _bad_request(f"Failed to get RPC service for chain ID {cid}: {e}")

        try:
            metadata = source.get_token_metadata(tid)
        except SourceError as e:
            log.error("Error fetching metadata for token %s on chain %d: %s", tid, cid, e)
            return PlainTextResponse(f"Failed to fetch metadata: {e}", status_code=500)

        text = format_metadata_as_text(metadata, cid, tid, palette)
        return PlainTextResponse(text)

    @app.get("/{path:path}")
    def bad_path(path: str):
        return _bad_request("Invalid path. Expected format: /CHAIN_ID/TOKEN_ID")

    return app


# -------- local dev entrypoint --------
def main() -> None:
    cfg = load_config()
    setup_logging(cfg.log_level)
    app = create_app(cfg)
    log.info("Starting server on %s:%d", cfg.host, cfg.port)
    log.info("Example: http://localhost:%d/1/1", cfg.port)
    uvicorn.run(app, host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
