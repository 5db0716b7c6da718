# app.py

from flask import Flask
from flask_cors import CORS

from config import Config
from auth import auth_bp
from auth_provider import init_auth_provider
from ai_service import ai_bp
from errors import register_error_handlers
from models import db
from story_manager import books_bp, story_bp


# --- FLASK APP FACTORY ---
def create_app(config_class=Config, auth_provider=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Enable CORS for the API routes
    CORS(app, resources={r"/api/*": {"origins": app.config.get('CORS_ORIGINS', '*')}})

    db.init_app(app)
    with app.app_context():
        db.create_all()

    init_auth_provider(app, auth_provider)

    # --- REGISTER BLUEPRINTS (Separate Logic) ---
    app.register_blueprint(auth_bp)
    app.register_blueprint(books_bp)
    app.register_blueprint(story_bp)
    app.register_blueprint(ai_bp)

    # Errors are always JSON so clients can parse them uniformly
    register_error_handlers(app)

    return app


# --- MAIN EXECUTION ---
if __name__ == '__main__':
    app = create_app()
    # The debug flag must be False in production
    app.run(debug=True, port=app.config['PORT'], use_reloader=False)
