"""
Widget Content Model
Structured config for widget media: a background slideshow plus overlay layers.
Shared by the server (parsing and URL resolution) and the player (HTML rendering).
"""
import enum
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from jinja2 import Environment
from markupsafe import Markup

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND_SECONDS = 5


class LayerKind(enum.Enum):
    """Overlay layer kinds the renderer knows how to draw"""
    CLOCK = 'clock'
    WEATHER = 'weather'
    RSS = 'rss'
    QR = 'qr'
    IMAGE = 'image'
    VIDEO = 'video'


class BackgroundMode(enum.Enum):
    COVER = 'cover'
    CONTAIN = 'contain'


class WidgetConfigError(ValueError):
    """Raised when a widget config does not have the expected shape"""
    pass


@dataclass
class WidgetBackground:
    media_id: int
    duration: int = DEFAULT_BACKGROUND_SECONDS
    preview_url: Optional[str] = None


@dataclass
class WidgetLayer:
    id: str
    kind: LayerKind
    name: str = ''
    x: float = 50.0
    y: float = 50.0
    scale: float = 1.0
    active: bool = True
    url: Optional[str] = None
    rss_url: Optional[str] = None
    qr_data: Optional[str] = None


@dataclass
class WidgetConfig:
    backgrounds: List[WidgetBackground] = field(default_factory=list)
    layers: List[WidgetLayer] = field(default_factory=list)
    bg_mode: BackgroundMode = BackgroundMode.COVER

    @property
    def active_layers(self):
        return [layer for layer in self.layers if layer.active]

    def to_dict(self) -> Dict[str, Any]:
        layers = []
        for layer in self.layers:
            data = asdict(layer)
            data.pop('kind')
            data['type'] = layer.kind.value
            layers.append(data)
        return {
            'backgrounds': [asdict(bg) for bg in self.backgrounds],
            'layers': layers,
            'bg_mode': self.bg_mode.value
        }


def _parse_background(raw: Any) -> WidgetBackground:
    if not isinstance(raw, dict) or 'media_id' not in raw:
        raise WidgetConfigError('Background entries need a media_id')
    try:
        media_id = int(raw['media_id'])
        duration = int(raw.get('duration') or DEFAULT_BACKGROUND_SECONDS)
    except (TypeError, ValueError) as e:
        raise WidgetConfigError(f'Invalid background entry: {e}')
    preview_url = raw.get('preview_url')
    return WidgetBackground(media_id=media_id, duration=duration,
                            preview_url=preview_url if isinstance(preview_url, str) else None)


def _parse_layer(raw: Any) -> Optional[WidgetLayer]:
    if not isinstance(raw, dict) or 'id' not in raw or 'type' not in raw:
        raise WidgetConfigError('Layer entries need an id and a type')
    try:
        kind = LayerKind(raw['type'])
    except ValueError:
        logger.warning(f"Dropping widget layer {raw.get('id')} with unknown type {raw.get('type')!r}")
        return None
    try:
        return WidgetLayer(
            id=str(raw['id']),
            kind=kind,
            name=str(raw.get('name') or ''),
            x=float(raw.get('x', 50)),
            y=float(raw.get('y', 50)),
            scale=float(raw.get('scale', 1)),
            active=bool(raw.get('active', True)),
            url=raw.get('url'),
            rss_url=raw.get('rss_url'),
            qr_data=raw.get('qr_data')
        )
    except (TypeError, ValueError) as e:
        raise WidgetConfigError(f'Invalid layer {raw.get("id")}: {e}')


def parse_widget_config(raw: Any) -> Optional[WidgetConfig]:
    """
    Parse a stored or transmitted widget config

    Args:
        raw: JSON text or an already decoded dict

    Returns:
        WidgetConfig, or None when the config is missing or malformed
    """
    if raw is None or raw == '':
        return None

    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        if not isinstance(data, dict):
            raise WidgetConfigError('Widget config must be an object')

        backgrounds = data.get('backgrounds')
        layers = data.get('layers')
        if not isinstance(backgrounds, list) or not isinstance(layers, list):
            raise WidgetConfigError('Widget config needs backgrounds and layers lists')

        try:
            bg_mode = BackgroundMode(data.get('bg_mode') or 'cover')
        except ValueError:
            bg_mode = BackgroundMode.COVER

        parsed_layers = [layer for layer in (_parse_layer(item) for item in layers) if layer is not None]
        return WidgetConfig(
            backgrounds=[_parse_background(item) for item in backgrounds],
            layers=parsed_layers,
            bg_mode=bg_mode
        )
    except (ValueError, TypeError) as e:
        # json.JSONDecodeError and WidgetConfigError are both ValueErrors
        logger.warning(f'Malformed widget config: {e}')
        return None


# ============================================================================
# HTML RENDERING
# ============================================================================

_WIDGET_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { background: #000; overflow: hidden; font-family: sans-serif; }
  .bg { position: absolute; top: 0; left: 0; width: 100%; height: 100%; object-fit: {{ bg_mode }}; transition: opacity 0.8s ease-in-out; }
  .layer { position: absolute; transform: translate(-50%, -50%); z-index: 10; pointer-events: none; }
</style>
</head>
<body>
<div id="slide" style="position:relative; width:100vw; height:100vh; overflow:hidden;">
  {% for bg in backgrounds %}
  <img class="bg" id="bg-{{ loop.index0 }}" src="{{ bg.preview_url or '' }}" style="opacity: {{ 1 if loop.first else 0 }};">
  {% endfor %}
  {% for layer in layers %}
  <div class="layer" style="left: {{ layer.x }}%; top: {{ layer.y }}%; transform: translate(-50%, -50%) scale({{ layer.scale }});">
    {{ render_layer(layer) }}
  </div>
  {% endfor %}
</div>
<script>
  var durations = {{ durations | tojson }};
  var current = 0;
  function nextBg() {
    var prev = document.getElementById('bg-' + current);
    if (prev) prev.style.opacity = 0;
    current = (current + 1) % (durations.length || 1);
    var next = document.getElementById('bg-' + current);
    if (next) next.style.opacity = 1;
    setTimeout(nextBg, (durations[current] || 5) * 1000);
  }
  if (durations.length > 1) setTimeout(nextBg, (durations[0] || 5) * 1000);
  function updateClocks() {
    var now = new Date();
    document.querySelectorAll('.clock').forEach(function (el) {
      el.querySelector('.time').innerText = now.toLocaleTimeString([], {hour: '2-digit', minute: '2-digit'});
      el.querySelector('.date').innerText = now.toLocaleDateString([], {weekday: 'long', day: 'numeric', month: 'long'});
    });
  }
  setInterval(updateClocks, 1000); updateClocks();
</script>
</body>
</html>
"""

_LAYER_TEMPLATES = {
    LayerKind.CLOCK: '<div class="clock" style="color:#fff; text-align:right; text-shadow:0 4px 15px rgba(0,0,0,0.8);">'
                     '<div class="time" style="font-size:8vw; font-weight:bold;">00:00</div>'
                     '<div class="date" style="font-size:3vw;"></div></div>',
    LayerKind.WEATHER: '<div style="color:#fff; font-size:5vw; font-weight:bold; text-shadow:0 4px 15px rgba(0,0,0,0.8);">'
                       '{{ layer.name }}</div>',
    LayerKind.RSS: '<div style="width:100vw; background:rgba(0,0,0,0.85); color:#fff; padding:14px 0;">'
                   '<marquee style="font-size:2.5vw;" scrollamount="6">{{ layer.rss_url or layer.name }}</marquee></div>',
    LayerKind.QR: '<div style="background:#fff; padding:10px; border-radius:8px;">'
                  '<img src="https://api.qrserver.com/v1/create-qr-code/?size=300x300&data={{ (layer.qr_data or "") | urlencode }}"></div>',
    LayerKind.IMAGE: '<img src="{{ layer.url or "" }}" style="width:100%; height:100%; object-fit:contain;">',
    LayerKind.VIDEO: '<video src="{{ layer.url or "" }}" autoplay loop muted style="width:100%; height:100%; object-fit:contain;"></video>',
}

_env = Environment(autoescape=True)
_layer_templates = {kind: _env.from_string(source) for kind, source in _LAYER_TEMPLATES.items()}
_page_template = _env.from_string(_WIDGET_TEMPLATE)


def render_layer(layer: WidgetLayer):
    return Markup(_layer_templates[layer.kind].render(layer=layer))


def render_widget_html(config: WidgetConfig) -> str:
    """Render a widget config as a standalone full-screen HTML page"""
    return _page_template.render(
        backgrounds=config.backgrounds,
        layers=config.active_layers,
        bg_mode=config.bg_mode.value,
        durations=[bg.duration for bg in config.backgrounds],
        render_layer=render_layer
    )
