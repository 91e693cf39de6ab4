from __future__ import annotations

from fastapi.responses import HTMLResponse

from .clients import JINJA_ENV

ERROR_TEMPLATE = JINJA_ENV.from_string(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{{ title }} | RoModerate</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #0f0a1a; color: #eee; display: grid; place-items: center; min-height: 100vh; margin: 0; }
    .card { background: #1b1230; border: 1px solid #6b21a8; border-radius: 12px; padding: 32px; max-width: 480px; }
    h1 { margin-top: 0; color: #c084fc; }
    a { color: #c084fc; }
    .code { opacity: .6; font-size: .85rem; }
  </style>
</head>
<body>
  <div class="card">
    <div class="code">Error {{ status_code }}</div>
    <h1>{{ title }}</h1>
    <p>{{ message }}</p>
    <p><a href="/">Back to dashboard</a></p>
  </div>
</body>
</html>
"""
)


def render_error(title: str, message: str, status_code: int = 400) -> HTMLResponse:
    html = ERROR_TEMPLATE.render(title=title, message=message, status_code=status_code)
    return HTMLResponse(html, status_code=status_code, headers={"Cache-Control": "no-store"})
