"""HTML pages for the landing screen and the portal configuration form."""

from __future__ import annotations

import html
import json
from textwrap import dedent

from .models import PortalConfig


LANDING_TEMPLATE = dedent(
    """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <title>__APP_NAME__</title>
</head>
<body>
    <h1>__APP_NAME__ Add-on</h1>
    <p><a href="__BASE_URL__/configure">Configure</a></p>
    <p>Manifest URL: <code>__BASE_URL__/manifest.json</code></p>
</body>
</html>
    """
)


CONFIG_TEMPLATE = dedent(
    """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>__APP_NAME__ · Configuration</title>
    <style>
        :root {
            color-scheme: dark;
            font-family: 'Inter', 'Segoe UI', system-ui, -apple-system, sans-serif;
            --surface: #141414;
            --outline: #2b2b2b;
            --text-muted: #a6a6a6;
            background: #000000;
            color: #f5f5f5;
        }
        main {
            max-width: 820px;
            margin: 0 auto;
            padding: 3rem 1.5rem 4rem;
        }
        label {
            display: block;
            margin-top: 0.75rem;
            color: var(--text-muted);
        }
        input {
            width: 100%;
            padding: 0.5rem;
            background: var(--surface);
            color: inherit;
            border: 1px solid var(--outline);
            border-radius: 6px;
        }
        .row {
            display: grid;
            grid-template-columns: 1fr 1fr;
            gap: 0.75rem;
        }
        button {
            margin-top: 1rem;
            padding: 0.5rem 1rem;
        }
        pre {
            white-space: pre-wrap;
            word-break: break-all;
        }
    </style>
</head>
<body>
<main>
    <h2>__APP_NAME__ Configuration</h2>
    <label for="portal">Portal URL</label>
    <input id="portal" placeholder="http://host/stalker_portal/server/load.php" />
    <div class="row">
        <div>
            <label for="mac">MAC Address</label>
            <input id="mac" placeholder="00:1A:79:12:34:56" />
        </div>
        <div>
            <label for="prehash">Prehash (optional)</label>
            <input id="prehash" placeholder="EF92F... (if required by portal)" />
        </div>
    </div>
    <div class="row">
        <div><label for="stb_lang">stb_lang</label><input id="stb_lang" /></div>
        <div><label for="timezone">timezone</label><input id="timezone" /></div>
    </div>
    <div class="row">
        <div><label for="ua">User-Agent</label><input id="ua" /></div>
        <div><label for="al">Accept-Language</label><input id="al" /></div>
    </div>
    <button type="button" onclick="save()">Save</button>
    <button type="button" onclick="test()">Test</button>
    <pre id="out"></pre>
    <p>Manifest URL: <code>__MANIFEST_URL__</code></p>
</main>
<script>
    const defaults = __DEFAULTS_JSON__;
    const fields = {
        portal: 'portal_url',
        mac: 'mac',
        prehash: 'prehash',
        stb_lang: 'stb_lang',
        timezone: 'timezone',
        ua: 'user_agent',
        al: 'accept_language',
    };
    for (const [inputId, key] of Object.entries(fields)) {
        document.getElementById(inputId).value = defaults[key] || '';
    }
    const out = document.getElementById('out');
    function show(message) { out.textContent = message; }
    function collect() {
        const body = {};
        for (const [inputId, key] of Object.entries(fields)) {
            body[key] = document.getElementById(inputId).value;
        }
        return body;
    }
    async function post(path, body) {
        const response = await fetch(path, {
            method: 'POST',
            headers: { 'Content-Type': 'application/json' },
            body: JSON.stringify(body),
        });
        const payload = await response.json();
        return { ok: response.ok, payload };
    }
    async function save() {
        const { ok, payload } = await post('/api/config', collect());
        show(ok ? 'Saved\\n' + JSON.stringify(payload, null, 2) : 'Error: ' + (payload.detail || ''));
    }
    async function test() {
        const body = collect();
        show('Testing...');
        const { ok, payload } = await post('/api/test', { portal_url: body.portal_url, mac: body.mac });
        show(ok ? JSON.stringify(payload, null, 2) : 'Error: ' + (payload.detail || ''));
    }
</script>
</body>
</html>
    """
)


def render_landing_page(app_name: str, base_url: str) -> str:
    """Return the HTML for the `/` landing page."""

    html_text = LANDING_TEMPLATE
    replacements = {
        "__APP_NAME__": html.escape(app_name),
        "__BASE_URL__": html.escape(base_url.rstrip("/")),
    }
    for placeholder, value in replacements.items():
        html_text = html_text.replace(placeholder, value)
    return html_text


def render_config_page(app_name: str, config: PortalConfig, *, manifest_url: str) -> str:
    """Return the full HTML for the `/configure` page."""

    defaults = config.model_dump(exclude={"client_id"})
    defaults_json = json.dumps(defaults).replace("</", "<\\/")

    html_text = CONFIG_TEMPLATE
    replacements = {
        "__APP_NAME__": html.escape(app_name),
        "__MANIFEST_URL__": html.escape(manifest_url),
        "__DEFAULTS_JSON__": defaults_json,
    }
    for placeholder, value in replacements.items():
        html_text = html_text.replace(placeholder, value)
    return html_text
