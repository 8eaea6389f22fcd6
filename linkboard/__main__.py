import os

from linkboard import create_app

if __name__ == "__main__":  # pragma: no cover
    app = create_app()
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8080"))
    app.run(host=host, port=port, debug=False)
