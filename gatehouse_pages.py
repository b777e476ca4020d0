"""
gatehouse_pages.py — default HTML for the login/consent form.

The endpoint only needs something with ``render(params) -> str``; hosts can
swap in their own template engine. Every interpolated value is escaped.
"""

import html as html_mod
from typing import Any

_STYLE = """
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
            background: #0a0a1a; color: #e0e0e0;
            display: flex; justify-content: center; align-items: center;
            min-height: 100vh; margin: 0; }
        .card { background: #1a1a2e; border: 1px solid #2a2a4a; border-radius: 12px;
            padding: 2rem; max-width: 400px; width: 90%;
            box-shadow: 0 4px 24px rgba(0, 0, 0, 0.5); }
        .card.error { border-color: #ff4444; text-align: center; }
        h1 { font-size: 1.3rem; margin: 0 0 0.5rem 0; color: #00d4ff; }
        .error h1 { color: #ff4444; }
        .client { color: #ff6b9d; font-weight: 600; }
        .perms { background: #12122a; border: 1px solid #2a2a4a; border-radius: 8px;
            padding: 1rem; margin: 1rem 0; font-size: 0.9rem; }
        .perms li { margin: 0.3rem 0; }
        label { font-size: 0.9rem; color: #aaa; }
        input[type=text], input[type=password] { width: 100%; padding: 0.6rem;
            border: 1px solid #2a2a4a; border-radius: 6px; background: #12122a;
            color: #e0e0e0; font-size: 1rem; margin: 0.4rem 0 0.8rem 0; }
        button { width: 100%; padding: 0.75rem; border: none; border-radius: 8px;
            font-size: 1rem; cursor: pointer; font-weight: 600;
            background: #00d4ff; color: #0a0a1a; }
        button:hover { background: #00b8e6; }
"""

_HIDDEN_FIELDS = ("response_type", "client_id", "redirect_uri", "scope", "state")


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{html_mod.escape(title)}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>{_STYLE}</style>
</head>
<body>
{body}
</body>
</html>"""


class LoginFormRenderer:
    """Renders the parameters built for a GET authorization request."""

    def __init__(self, title: str = "Gatehouse"):
        self.title = title

    def render(self, params: dict[str, Any]) -> str:
        if "error" in params:
            return self.render_error(str(params["error"]))
        return self.render_form(params)

    def render_error(self, error: str) -> str:
        safe_error = html_mod.escape(error)
        return _page(f"{self.title} — Error", f"""    <div class="card error">
        <h1>Cannot authorize</h1>
        <p>The authorization request is invalid: <code>{safe_error}</code></p>
    </div>""")

    def render_form(self, params: dict[str, Any]) -> str:
        safe_client = html_mod.escape(str(params.get("client_name") or params.get("client_id", "")))
        safe_target = html_mod.escape(str(params.get("form_target", "/")), quote=True)

        hidden = "\n".join(
            f'            <input type="hidden" name="{name}" '
            f'value="{html_mod.escape(str(params[name]), quote=True)}">'
            for name in _HIDDEN_FIELDS if name in params
        )

        perms = ""
        scope_list = params.get("scope_list") or []
        if scope_list:
            items = "\n".join(f"                <li>{html_mod.escape(str(d))}</li>" for d in scope_list)
            perms = f"""        <div class="perms">
            <strong>This will allow:</strong>
            <ul>
{items}
            </ul>
        </div>"""

        greeting = ""
        if params.get("user_name"):
            greeting = f"        <p>Signed in as {html_mod.escape(str(params['user_name']))}.</p>"

        return _page(f"{self.title} — Authorize", f"""    <div class="card">
        <h1>{html_mod.escape(self.title)}</h1>
        <p><span class="client">{safe_client}</span> wants access to your account.</p>
{greeting}
{perms}
        <form method="POST" action="{safe_target}">
{hidden}
            <label for="username">Username</label>
            <input type="text" id="username" name="username" autocomplete="username" required>
            <label for="password">Password</label>
            <input type="password" id="password" name="password"
                autocomplete="current-password" required>
            <button type="submit">Authorize</button>
        </form>
    </div>""")
