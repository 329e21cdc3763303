"""
Web dashboard and API for the case map.

Provides:
- Map page rendered with the Google Maps JavaScript API
- Map state (camera, markers, tooltip, stats, errors) for the renderer
- Filters, retry, "center map" and search endpoints
- Pointer and camera events reported back by the browser
"""

import logging
from typing import TYPE_CHECKING, Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
import uvicorn

from ..errors import CaseFetchError
from ..markers.element import ScreenRect
from ..provider.base import LatLng
from ..view.map_view import MARKER_EVENTS, MapFilters

if TYPE_CHECKING:
    from ..app import CaseMapApp

logger = logging.getLogger(__name__)

# HTML template for the map page
MAP_PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Case Map</title>
    <style>
        :root {
            --bg: #0a0e14;
            --card: #12171f;
            --border: #252d3a;
            --text: #e1e4e8;
            --text-dim: #6e7a8a;
            --accent: #4d9fff;
            --success: #10b981;
            --warning: #f59e0b;
            --danger: #ef4444;
        }
        * { box-sizing: border-box; margin: 0; padding: 0; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
            background: var(--bg);
            color: var(--text);
            line-height: 1.5;
            padding: 24px 48px;
        }
        header {
            display: flex;
            justify-content: space-between;
            align-items: center;
            margin-bottom: 20px;
            padding-bottom: 16px;
            border-bottom: 1px solid var(--border);
        }
        h1 { font-size: 18px; font-weight: 600; letter-spacing: -0.3px; }
        .stats { display: flex; gap: 16px; margin-bottom: 16px; flex-wrap: wrap; }
        .stat {
            background: var(--card);
            border: 1px solid var(--border);
            border-radius: 10px;
            padding: 12px 18px;
            min-width: 120px;
        }
        .stat .value { font-size: 22px; font-weight: 700; font-variant-numeric: tabular-nums; }
        .stat .label { font-size: 10px; color: var(--text-dim); text-transform: uppercase; }
        .toolbar { display: flex; gap: 10px; margin-bottom: 16px; flex-wrap: wrap; align-items: center; }
        .form-input {
            padding: 8px 12px;
            background: var(--bg);
            border: 1px solid var(--border);
            border-radius: 6px;
            color: var(--text);
            font-size: 13px;
        }
        .btn {
            padding: 8px 14px;
            border: none;
            border-radius: 6px;
            font-size: 12px;
            font-weight: 600;
            cursor: pointer;
            background: var(--accent);
            color: #fff;
        }
        .btn.secondary { background: #6e7681; }
        .map-container {
            position: relative;
            height: calc(100vh - 260px);
            min-height: 500px;
            border-radius: 10px;
            overflow: hidden;
            background: #0d1117;
        }
        #case-map { height: 100%; width: 100%; }
        .map-status {
            position: absolute;
            top: 50%;
            left: 50%;
            transform: translate(-50%, -50%);
            background: rgba(22,27,34,0.95);
            border: 1px solid var(--border);
            border-radius: 10px;
            padding: 20px 28px;
            text-align: center;
            display: none;
            z-index: 20;
        }
        .map-status.show { display: block; }
        .search-box { position: relative; }
        .search-results {
            position: absolute;
            top: 40px;
            left: 0;
            width: 320px;
            background: var(--card);
            border: 1px solid var(--border);
            border-radius: 8px;
            z-index: 30;
            display: none;
        }
        .search-results.show { display: block; }
        .search-item { padding: 8px 12px; cursor: pointer; font-size: 12px; }
        .search-item:hover { background: #1a2130; }
        .search-item .meta { color: var(--text-dim); font-size: 11px; }
        .case-marker { transition: transform 0.15s; }
        .case-marker:hover { transform: scale(1.15); }
        .case-tooltip {
            position: absolute;
            background: rgba(28, 33, 40, 0.95);
            border: 1px solid #30363d;
            border-radius: 6px;
            padding: 6px 10px;
            font-size: 11px;
            pointer-events: none;
            z-index: 10001;
            display: none;
        }
        .case-tooltip.show { display: block; }
        .case-tooltip .title { font-weight: 600; }
        .case-tooltip .meta { color: var(--text-dim); }
    </style>
</head>
<body>
    <header>
        <h1>Missing Persons Map</h1>
        <span id="state-badge">--</span>
    </header>

    <div class="stats">
        <div class="stat"><div class="value" id="st-total">0</div><div class="label">Total</div></div>
        <div class="stat"><div class="value" id="st-active" style="color: var(--danger);">0</div><div class="label">Missing</div></div>
        <div class="stat"><div class="value" id="st-found" style="color: var(--success);">0</div><div class="label">Found</div></div>
        <div class="stat"><div class="value" id="st-located">0</div><div class="label">On map</div></div>
    </div>

    <div class="toolbar">
        <div class="search-box">
            <input type="text" class="form-input" id="search" style="width: 260px;" placeholder="Search name or location..." oninput="onSearchInput()">
            <div class="search-results" id="search-results"></div>
        </div>
        <select class="form-input" id="f-status">
            <option value="">All statuses</option>
            <option value="missing">Missing</option>
            <option value="found">Found</option>
            <option value="under_investigation">Under investigation</option>
        </select>
        <select class="form-input" id="f-time">
            <option value="">Any time</option>
            <option value="24h">Last 24 hours</option>
            <option value="7d">Last 7 days</option>
            <option value="30d">Last 30 days</option>
        </select>
        <input type="number" class="form-input" id="f-age-min" style="width: 90px;" placeholder="Age min">
        <input type="number" class="form-input" id="f-age-max" style="width: 90px;" placeholder="Age max">
        <button class="btn" onclick="applyFilters()">Apply</button>
        <button class="btn secondary" onclick="clearFilters()">Clear</button>
        <button class="btn secondary" onclick="centerMap()">Center map</button>
    </div>

    <div class="map-container">
        <div id="case-map"></div>
        <div class="case-tooltip" id="tooltip"></div>
        <div class="map-status" id="map-status">
            <div id="map-status-msg">Loading map...</div>
            <button class="btn" id="btn-retry" style="margin-top: 12px; display: none;" onclick="retry()">Retry</button>
        </div>
    </div>

    <script>
        let gmap = null;
        let markers = {};
        let lastServerCamera = null;
        let searchTimer = null;

        async function api(path, options = {}) {
            const r = await fetch(path, {
                headers: { 'Content-Type': 'application/json' },
                ...options,
            });
            return r.json();
        }

        async function boot() {
            const config = await api('/api/config');
            const maps = config.maps;
            if (!maps.api_key) {
                await render();
                return;
            }
            const script = document.createElement('script');
            script.src = `https://maps.googleapis.com/maps/api/js?key=${maps.api_key}&libraries=${maps.libraries.join(',')}&callback=initMap`;
            script.async = true;
            document.head.appendChild(script);
            window.mapsConfig = maps;
        }

        window.initMap = function() {
            const maps = window.mapsConfig;
            gmap = new google.maps.Map(document.getElementById('case-map'), {
                center: maps.default_center,
                zoom: maps.default_zoom,
                mapId: maps.map_id || undefined,
            });
            gmap.addListener('idle', () => {
                const c = gmap.getCenter();
                api('/api/map/camera', {
                    method: 'POST',
                    body: JSON.stringify({ center: { lat: c.lat(), lng: c.lng() }, zoom: gmap.getZoom() }),
                });
            });
            render();
            setInterval(render, 1000);
        };

        function markerRect(el) {
            // Relative to .map-container, the tooltip's positioning context
            const box = document.querySelector('.map-container').getBoundingClientRect();
            const r = el.getBoundingClientRect();
            return { left: r.left - box.left, top: r.top - box.top, width: r.width, height: r.height };
        }

        function buildMarker(m) {
            const holder = document.createElement('div');
            holder.innerHTML = m.html;
            const el = holder.firstElementChild;
            el.style.zIndex = m.z_index;
            const position = { lat: m.lat, lng: m.lng };
            let handle = null;
            const raise = (z) => {
                el.style.zIndex = z;
                if (handle && 'zIndex' in handle) handle.zIndex = z;
            };
            el.addEventListener('click', () => sendEvent(m.case_id, 'click'));
            el.addEventListener('pointerenter', () => {
                raise(10000);
                sendEvent(m.case_id, 'pointerenter', markerRect(el));
            });
            el.addEventListener('pointerleave', () => {
                raise(m.z_index);
                sendEvent(m.case_id, 'pointerleave');
            });
            if (google.maps.marker && google.maps.marker.AdvancedMarkerElement) {
                handle = new google.maps.marker.AdvancedMarkerElement({
                    map: gmap, position, content: el, title: m.title, zIndex: m.z_index,
                });
                return { handle, el, remove: () => { handle.map = null; } };
            }
            const overlay = new google.maps.OverlayView();
            handle = overlay;
            overlay.onAdd = function() { this.getPanes().overlayMouseTarget.appendChild(el); };
            overlay.draw = function() {
                const p = this.getProjection().fromLatLngToDivPixel(new google.maps.LatLng(position));
                el.style.position = 'absolute';
                el.style.left = (p.x - el.offsetWidth / 2) + 'px';
                el.style.top = (p.y - el.offsetHeight) + 'px';
            };
            overlay.onRemove = function() { el.remove(); };
            overlay.setMap(gmap);
            return { handle: overlay, el, remove: () => overlay.setMap(null) };
        }

        function syncMarkers(list) {
            const seen = new Set();
            list.forEach(m => {
                const key = String(m.case_id);
                seen.add(key);
                const existing = markers[key];
                if (existing && existing.renderKey === m.render_key) return;
                if (existing) existing.view.remove();
                markers[key] = { renderKey: m.render_key, view: buildMarker(m) };
            });
            Object.keys(markers).forEach(key => {
                if (!seen.has(key)) {
                    markers[key].view.remove();
                    delete markers[key];
                }
            });
        }

        function syncCamera(camera) {
            if (!camera || !gmap) return;
            const key = JSON.stringify([camera.center, camera.zoom]);
            if (key === lastServerCamera) return;
            lastServerCamera = key;
            gmap.setCenter(camera.center);
            gmap.setZoom(camera.zoom);
        }

        function textNode(tag, className, text) {
            const node = document.createElement(tag);
            if (className) node.className = className;
            node.textContent = text == null ? '' : String(text);
            return node;
        }

        function renderTooltip(tooltip) {
            const el = document.getElementById('tooltip');
            if (!tooltip) {
                el.className = 'case-tooltip';
                return;
            }
            el.replaceChildren(
                textNode('div', 'title', tooltip.title),
                textNode('div', 'meta', `${tooltip.status} \\u00b7 ${tooltip.last_seen_location || ''}`),
            );
            el.style.left = tooltip.left + 'px';
            el.style.top = tooltip.top + 'px';
            el.style.width = tooltip.width + 'px';
            el.className = 'case-tooltip show';
        }

        function renderStatus(state) {
            const box = document.getElementById('map-status');
            const retryBtn = document.getElementById('btn-retry');
            document.getElementById('state-badge').textContent = state.state;
            if (state.error) {
                document.getElementById('map-status-msg').textContent = state.error.message;
                retryBtn.style.display = state.error.retryable ? 'inline-block' : 'none';
                box.className = 'map-status show';
            } else if (state.state === 'loading') {
                document.getElementById('map-status-msg').textContent = 'Loading map...';
                retryBtn.style.display = 'none';
                box.className = 'map-status show';
            } else {
                box.className = 'map-status';
            }
        }

        async function render() {
            try {
                const state = await api('/api/map/state');
                renderStatus(state);
                document.getElementById('st-total').textContent = state.stats.total_cases;
                document.getElementById('st-active').textContent = state.stats.active_cases;
                document.getElementById('st-found').textContent = state.stats.found_cases;
                document.getElementById('st-located').textContent = state.stats.located_cases;
                if (gmap) {
                    syncMarkers(state.markers);
                    syncCamera(state.camera);
                }
                renderTooltip(state.tooltip);
                if (state.navigation && state.navigation !== window.lastNavigation) {
                    window.lastNavigation = state.navigation;
                    window.location.href = state.navigation;
                }
            } catch (e) {
                console.error(e);
            }
        }

        async function sendEvent(caseId, event, rect = null) {
            await api(`/api/map/markers/${encodeURIComponent(caseId)}/events`, {
                method: 'POST',
                body: JSON.stringify({ event, rect }),
            });
            render();
        }

        function onSearchInput() {
            clearTimeout(searchTimer);
            searchTimer = setTimeout(runSearch, 50);
        }

        async function runSearch() {
            const q = document.getElementById('search').value;
            const box = document.getElementById('search-results');
            if (!q.trim()) {
                box.className = 'search-results';
                return;
            }
            const d = await api('/api/map/search?q=' + encodeURIComponent(q));
            if (d.query !== document.getElementById('search').value) return;
            box.innerHTML = '';
            (d.results || []).forEach(c => {
                const item = document.createElement('div');
                item.className = 'search-item';
                item.append(textNode('div', '', c.full_name), textNode('div', 'meta', c.last_seen_location));
                item.onclick = () => selectResult(c.id);
                box.appendChild(item);
            });
            if (d.error) box.replaceChildren(textNode('div', 'search-item', d.error));
            box.className = 'search-results show';
        }

        async function selectResult(caseId) {
            await api(`/api/map/search/${encodeURIComponent(caseId)}/select`, { method: 'POST' });
            document.getElementById('search-results').className = 'search-results';
            render();
        }

        function num(id) {
            const v = document.getElementById(id).value;
            return v === '' ? null : parseInt(v, 10);
        }

        async function applyFilters() {
            await api('/api/map/filters', {
                method: 'POST',
                body: JSON.stringify({
                    status: document.getElementById('f-status').value,
                    time_range: document.getElementById('f-time').value,
                    age_min: num('f-age-min'),
                    age_max: num('f-age-max'),
                }),
            });
            render();
        }

        async function clearFilters() {
            ['f-status', 'f-time', 'f-age-min', 'f-age-max'].forEach(id => document.getElementById(id).value = '');
            await api('/api/map/filters', { method: 'DELETE' });
            render();
        }

        async function centerMap() {
            await api('/api/map/center', { method: 'POST' });
            render();
        }

        async function retry() {
            await api('/api/map/retry', { method: 'POST' });
            render();
        }

        boot();
    </script>
</body>
</html>
"""


def create_app(map_app: "CaseMapApp") -> FastAPI:
    """Create FastAPI application with routes."""
    app = FastAPI(title="Case Map", version="0.1.0")
    app.state.casemap = map_app

    def current_view():
        view = app.state.casemap.view
        if view is None:
            raise HTTPException(status_code=503, detail="Map view not initialized")
        return view

    @app.on_event("startup")
    async def startup():
        await app.state.casemap.start()

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.casemap.close()

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return MAP_PAGE

    @app.get("/api/status")
    async def get_status():
        return app.state.casemap.get_status()

    @app.get("/api/config")
    async def get_config():
        casemap = app.state.casemap
        return {
            "maps": casemap.map_config().to_dict(),
            "web": casemap.config.get("web", {}),
        }

    # ============== MAP STATE ==============

    @app.get("/api/map/state")
    async def get_state():
        view = current_view()
        view.check_map()
        return view.snapshot()

    @app.post("/api/map/filters")
    async def apply_filters(request: Request):
        view = current_view()
        try:
            filters = MapFilters.from_dict(await request.json())
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid filters: {e}")
            return JSONResponse({"status": "error", "message": str(e)}, status_code=400)

        ok = await view.apply_filters(filters)
        return {"status": "ok" if ok else "error", "state": view.snapshot()}

    @app.delete("/api/map/filters")
    async def clear_filters():
        view = current_view()
        ok = await view.clear_filters()
        return {"status": "ok" if ok else "error", "state": view.snapshot()}

    @app.post("/api/map/retry")
    async def retry():
        view = current_view()
        ok = await view.retry()
        return {"status": "ok" if ok else "error", "state": view.snapshot()}

    @app.post("/api/map/center")
    async def center_map():
        view = current_view()
        if not view.center_map():
            raise HTTPException(status_code=409, detail="Map is not ready")
        return {"status": "ok", "camera": view.snapshot()["camera"]}

    @app.post("/api/map/camera")
    async def sync_camera(request: Request):
        """Pan/zoom reported by the browser renderer."""
        view = current_view()
        try:
            body = await request.json()
            center = LatLng.from_dict(body["center"])
            zoom = float(body["zoom"])
        except (KeyError, ValueError, TypeError) as e:
            return JSONResponse({"status": "error", "message": f"Invalid camera: {e}"}, status_code=400)

        if not view.sync_camera(center, zoom):
            raise HTTPException(status_code=409, detail="Map is not ready")
        return {"status": "ok"}

    # ============== SEARCH ==============

    @app.get("/api/map/search")
    async def search(q: str = ""):
        view = current_view()
        if not view.is_active:
            raise HTTPException(status_code=503, detail="Map view not mounted")
        try:
            results = await view.search.query(q)
        except CaseFetchError as e:
            return JSONResponse(
                {"query": q, "results": [], "error": f"Search failed: {e}"},
                status_code=502,
            )
        return {"query": view.search.text, "results": [c.to_dict() for c in results]}

    @app.post("/api/map/search/{case_id}/select")
    async def select_result(case_id: str):
        view = current_view()
        case = view.select_search_result(case_id)
        if case is None:
            raise HTTPException(status_code=404, detail=f"Case not found: {case_id}")
        return {"status": "ok", "case": case.to_dict(), "camera": view.snapshot()["camera"]}

    # ============== MARKER EVENTS ==============

    @app.post("/api/map/markers/{case_id}/events")
    async def marker_event(case_id: str, request: Request):
        view = current_view()
        body: Dict[str, Any] = await request.json()
        event = body.get("event", "")
        if event not in MARKER_EVENTS:
            return JSONResponse(
                {"status": "error", "message": f"Unsupported marker event: {event}"},
                status_code=400,
            )
        rect = None
        if body.get("rect") is not None:
            try:
                rect = ScreenRect.from_dict(body["rect"])
            except (KeyError, TypeError, ValueError) as e:
                return JSONResponse(
                    {"status": "error", "message": f"Invalid marker rect: {e}"},
                    status_code=400,
                )
        if not view.dispatch_marker_event(case_id, event, rect=rect):
            raise HTTPException(status_code=404, detail=f"Marker not found: {case_id}")

        tooltip = view.tooltip.tooltip
        return {
            "status": "ok",
            "hovered_id": view.tooltip.hovered_id,
            "tooltip": tooltip.to_dict() if tooltip else None,
            "navigation": view.navigation,
        }

    return app


def run_server(app: FastAPI, host: str = "0.0.0.0", port: int = 8080):
    """Run the web server."""
    uvicorn.run(app, host=host, port=port, log_level="info")
