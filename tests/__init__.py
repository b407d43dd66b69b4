"""
Token viewer test suite

Structure:
- unit/: bitmap decoding/rendering, source registry, RPC source, config, formatting
- integration/: HTTP endpoints through FastAPI's TestClient
- bmp_factory.py: builds synthetic BMP buffers for the tests
"""
