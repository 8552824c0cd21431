# backend/opsdb/serve.py
import os

import uvicorn


def main() -> None:
    """Run the API with uvicorn; TLS is terminated by the reverse proxy."""
    uvicorn.run(
        "opsdb.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() in {"1", "true", "yes", "on"},
        log_level=os.getenv("LOG_LEVEL", "info"),
        proxy_headers=True,
        forwarded_allow_ips=os.getenv("FORWARDED_ALLOW_IPS", "*"),
    )


if __name__ == "__main__":
    main()
