######################################################################
# Copyright 2016, 2024 John J. Rofrano. All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
######################################################################
"""
Package: service
Create and configure the Flask app, logging, CORS, and database
"""

import sys
from flask import Flask
from flask_cors import CORS
from service import config
from service.common import log_handlers

# -----------------------------------------------------------------------------
# ONE global Flask app so `from service import app` gets the instance with all
# routes registered; create_app() returns the same app for tests and scripts.
# -----------------------------------------------------------------------------
app = Flask(__name__)
app.config.from_object(config)

# The admin UI and checkout extension call /api from Shopify origins; the app
# proxy is reached from any storefront domain.
CORS(
    app,
    resources={
        r"/api/*": {"origins": app.config["CORS_ORIGINS"]},
        r"/proxy/*": {"origins": "*"},
    },
    supports_credentials=True,
    allow_headers=["Content-Type", "Authorization"],
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
)

# Initialize the database plugin
from service.models import db  # pylint: disable=wrong-import-position
db.init_app(app)

with app.app_context():
    # Import after the app exists so @app.route binds to it
    from service import routes, shop_routes, models  # noqa: F401  pylint: disable=unused-import, wrong-import-position
    from service.common import error_handlers, cli_commands  # noqa: F401  pylint: disable=unused-import, wrong-import-position
    from service.ui import ui_bp  # pylint: disable=wrong-import-position

    app.register_blueprint(ui_bp)

    try:
        db.create_all()
    except Exception as err:  # pylint: disable=broad-except
        app.logger.critical("%s: Cannot continue", err)
        sys.exit(4)

    log_handlers.init_logging(app, "gunicorn.error")

    app.logger.info(70 * "*")
    app.logger.info("  C A M P A I G N S   S E R V I C E   I N I T  ".center(70, "*"))
    app.logger.info(70 * "*")


def create_app():
    """Factory-style accessor to the (already created) global app."""
    return app
