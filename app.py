# Main Flask app
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from config import config
from models import db, bcrypt
from routes import api_bp

jwt = JWTManager()


def token_error(message):
    return jsonify({"errors": [{"message": message}]}), 401


@jwt.invalid_token_loader
def invalid_token(reason):
    return token_error(f"Invalid token: {reason}")


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_payload):
    return token_error("Token has expired")


@jwt.unauthorized_loader
def missing_token(reason):
    return token_error(f"Authentication required: {reason}")


@jwt.user_lookup_error_loader
def unknown_token_user(jwt_header, jwt_payload):
    return token_error("Token does not match an active user")


def create_app(config_name='default'):
    app = Flask(__name__)
    settings = config[config_name]
    app.config.from_object(settings)
    settings.init_app(app)
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'])

    # Register blueprints
    app.register_blueprint(api_bp, url_prefix='/')

    with app.app_context():
        db.create_all()

    app.logger.info("Started in %s mode", config_name)
    return app


if __name__ == '__main__':
    app = create_app(os.getenv('FLASK_CONFIG', 'default'))
    app.run(host='0.0.0.0', port=app.config['PORT'])
