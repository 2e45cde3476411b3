"""Jinja2 templates shared by the pipeline and the calendar pages."""
from pathlib import Path

from fastapi.templating import Jinja2Templates

TEMPLATES_DIR = Path(__file__).parent / "templates"
ASSETS_DIR = Path(__file__).parent / "assets"


def create_templates(hot_reloading: bool = False) -> Jinja2Templates:
    """
    Create the template renderer.

    With hot_reloading, edited templates are picked up without a restart.
    """
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    templates.env.auto_reload = hot_reloading
    return templates
