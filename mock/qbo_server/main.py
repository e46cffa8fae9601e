from fastapi import FastAPI, Form, Header, HTTPException
from fastapi.responses import JSONResponse
from pathlib import Path
import itertools
import json
import os

# Support both local development and Docker
DATA_DIR = Path("/qbo_stub") if os.path.exists("/qbo_stub") else Path(__file__).resolve().parents[1] / "qbo_stub"


def create_mock_app() -> FastAPI:
    """Mock QuickBooks token and report endpoints; every app starts with fresh tokens"""
    app = FastAPI(title="Mock QuickBooks Server", version="1.0.0")
    counter = itertools.count(1)
    access_tokens = set()
    refresh_tokens = set()

    def issue():
        n = next(counter)
        access_tokens.add(f"access-{n}")
        refresh_tokens.add(f"refresh-{n}")
        return {
            "token_type": "bearer",
            "access_token": f"access-{n}",
            "refresh_token": f"refresh-{n}",
            "expires_in": 3600,
            "x_refresh_token_expires_in": 8726400,
        }

    app.state.access_tokens = access_tokens
    app.state.refresh_tokens = refresh_tokens

    @app.get("/health")
    def health(): return {"status": "ok"}

    @app.post("/oauth2/v1/tokens/bearer")
    def tokens(grant_type: str = Form(...), code: str = Form(None), refresh_token: str = Form(None)):
        if grant_type == "authorization_code" and code:
            return issue()
        if grant_type == "refresh_token" and refresh_token in refresh_tokens:
            refresh_tokens.discard(refresh_token)  # single use
            return issue()
        raise HTTPException(status_code=400, detail="invalid_grant")

    @app.get("/v3/company/{realm_id}/reports/{report_name}")
    def get_report(realm_id: str, report_name: str, authorization: str = Header("")):
        if authorization.removeprefix("Bearer ") not in access_tokens:
            raise HTTPException(status_code=401, detail="AuthenticationFailed")
        if realm_id.startswith("unavailable"):
            raise HTTPException(status_code=503, detail="service unavailable")
        file = DATA_DIR / f"{report_name}.json"
        if not file.exists():
            raise HTTPException(status_code=404, detail="report not found")
        return JSONResponse(content=json.loads(file.read_text()))

    return app


app = create_mock_app()
