import os

import uvicorn


def main():
    host = os.getenv("AVAWORKLOAD_HOST", "0.0.0.0")
    port = int(os.getenv("AVAWORKLOAD_PORT", "8000"))
    uvicorn.run("avaworkload.app:app", host=host, port=port, lifespan="on")


if __name__ == "__main__":
    main()
