"""Edge renderer — page HTML and the Worker script bodies.

Two scripts exist:
- A static responder, produced on every deploy, with the rendered page
  HTML inlined as a JS string literal.
- KV_ROUTER_SCRIPT, the placeholder uploaded by the connectivity self-test.
  It looks the request host up in the MAINTENANCE_PAGES KV binding and
  renders whatever projection it finds there.

Page content allows a small set of formatting tags; everything else the
user typed is escaped by Jinja autoescaping.
"""

import json

import bleach
from flask import render_template

from statussaas.models.page import DEFAULT_DESIGN

ALLOWED_CONTENT_TAGS = [
    "a", "b", "br", "code", "em", "h2", "h3", "i", "li", "ol", "p",
    "pre", "strong", "ul",
]
ALLOWED_CONTENT_ATTRIBUTES = {"a": ["href", "title"]}

LAYOUT_ALIGN = {
    "centered": "center",
    "left-aligned": "left",
    "right-aligned": "right",
}


def sanitize_content(html):
    """Keep basic formatting tags, strip everything else."""
    if not html:
        return ""
    return bleach.clean(
        html,
        tags=ALLOWED_CONTENT_TAGS,
        attributes=ALLOWED_CONTENT_ATTRIBUTES,
        strip=True,
    )


def _safe_css(css):
    # Custom CSS lands inside a <style> element; never let it close it.
    return (css or "").replace("</", "")


def render_page_html(projection):
    """Render the public page HTML from a KV projection dict.

    The projection has the shape built by
    cloudflare_service.build_page_projection. Must be called inside an
    application context (uses the Jinja environment).
    """
    design = dict(DEFAULT_DESIGN)
    design.update(projection.get("design") or {})

    return render_template(
        "edge/maintenance.html",
        title=projection.get("title") or "Site Maintenance",
        description=projection.get("description") or "",
        content=sanitize_content(projection.get("content")),
        design=design,
        text_align=LAYOUT_ALIGN.get(design.get("layout"), "center"),
        custom_css=_safe_css(design.get("customCSS")),
    )


def render_worker_script(html):
    """Static fetch-event responder serving `html` for every request."""
    return STATIC_RESPONDER_TEMPLATE.replace("__PAGE_HTML__", json.dumps(html))


STATIC_RESPONDER_TEMPLATE = """\
const PAGE_HTML = __PAGE_HTML__;

const corsHeaders = {
  'Access-Control-Allow-Origin': '*',
  'Access-Control-Allow-Methods': 'GET, HEAD, POST, OPTIONS',
  'Access-Control-Allow-Headers': 'Content-Type',
};

addEventListener('fetch', event => {
  if (event.request.method === 'OPTIONS') {
    event.respondWith(new Response(null, { headers: corsHeaders }));
    return;
  }
  event.respondWith(new Response(PAGE_HTML, {
    headers: { 'Content-Type': 'text/html;charset=UTF-8', ...corsHeaders },
  }));
});
"""


KV_ROUTER_SCRIPT = """\
const corsHeaders = {
  'Access-Control-Allow-Origin': '*',
  'Access-Control-Allow-Methods': 'GET, HEAD, POST, OPTIONS',
  'Access-Control-Allow-Headers': 'Content-Type',
};

function escapeHtml(value) {
  return String(value == null ? '' : value)
    .replace(/&/g, '&amp;')
    .replace(/</g, '&lt;')
    .replace(/>/g, '&gt;')
    .replace(/"/g, '&quot;')
    .replace(/'/g, '&#39;');
}

function renderPage(page) {
  const design = page.design || {};
  const align = design.layout === 'left-aligned' ? 'left'
    : design.layout === 'right-aligned' ? 'right' : 'center';
  const logoSize = design.logoSize || {};
  const logo = design.logo
    ? `<img src="${escapeHtml(design.logo)}" alt="${escapeHtml(page.title)} logo" style="width:${Number(logoSize.width) || 200}px;height:${Number(logoSize.height) || 50}px;object-fit:contain;">`
    : '';
  return `<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>${escapeHtml(page.title || 'Site Maintenance')}</title>
<style>
body { margin: 0; min-height: 100vh; display: flex; align-items: center; justify-content: center;
  background: ${escapeHtml(design.backgroundColor || '#000000')}; color: ${escapeHtml(design.textColor || '#ffffff')};
  font-family: '${escapeHtml(design.fontFamily || 'Inter')}', sans-serif; }
.container { max-width: ${Number(design.maxWidth) || 768}px; padding: 2rem; text-align: ${align}; }
${String(design.customCSS || '').replace(/<\\//g, '')}
</style>
</head>
<body>
<div class="container">
${logo}
<h1>${escapeHtml(page.title || 'Site Maintenance')}</h1>
<p class="description">${escapeHtml(page.description)}</p>
<div class="content">${escapeHtml(page.content)}</div>
</div>
</body>
</html>`;
}

async function handleRequest(request) {
  const host = request.headers.get('host');
  const raw = await MAINTENANCE_PAGES.get(host);
  if (!raw) {
    return new Response('No maintenance page found', { status: 404 });
  }
  try {
    const page = JSON.parse(raw);
    if (page.status !== 'published') {
      return Response.redirect(`https://${host}`, 302);
    }
    return new Response(renderPage(page), {
      headers: { 'Content-Type': 'text/html;charset=UTF-8', ...corsHeaders },
    });
  } catch (error) {
    return new Response('Error serving maintenance page', { status: 500 });
  }
}

addEventListener('fetch', event => {
  if (event.request.method === 'OPTIONS') {
    event.respondWith(new Response(null, { headers: corsHeaders }));
  } else {
    event.respondWith(handleRequest(event.request));
  }
});
"""
