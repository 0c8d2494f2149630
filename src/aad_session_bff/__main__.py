import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "aad_session_bff.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
