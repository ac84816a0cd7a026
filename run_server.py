import logging

import uvicorn

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("Starting Sentinel Safety Engine API...")
    print("Docs available at: http://localhost:8000/docs")

    uvicorn.run(
        "safety_engine.api.server:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
