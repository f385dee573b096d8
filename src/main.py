import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from api.server import app  # noqa: E402
from shared.constants import DEV_PORT  # noqa: E402

logging.basicConfig(level=logging.INFO)

if __name__ == "__main__":
    port = int(os.environ.get("PORT", DEV_PORT))
    print(f"Starting Where-Am-I Reverse Geocoding API on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port)
