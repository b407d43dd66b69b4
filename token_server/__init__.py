"""
Token server — HTTP front end

- GET /{chain_id}/{token_id}?c0=..&c4=..  plain-text metadata, BMP images drawn as character art
- GET /health                             liveness + configured chain ids

Entry point:
    python -m token_server.server
"""
