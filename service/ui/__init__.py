"""Admin UI blueprint for the Campaigns service.

Mounts the administrator entry page at `/ui`. The embedded admin app loads
this page and talks to the REST API under `/api/campaigns`; the BDD smoke
test in `features/` drives it through the browser.
"""

from flask import Blueprint, current_app, render_template


# Serve templates from service/templates and static assets from service/static
ui_bp = Blueprint(
    "ui",
    __name__,
    template_folder="../templates",
    static_folder="../static",
)


@ui_bp.route("/ui", methods=["GET"])
def index():
    """Admin UI entry point."""
    # The title is used by tests to assert that the page renders.
    return render_template(
        "index.html",
        title="Campaigns Admin",
        api_key=current_app.config.get("SHOPIFY_API_KEY", ""),
    )
