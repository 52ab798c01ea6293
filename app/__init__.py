from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
import logging
from app.config import Config
from app.database import db, init_db


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=logging.DEBUG if app.config.get('DEBUG') else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # CORS para o frontend
    CORS(app,
         resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "DELETE", "OPTIONS"])

    # Inicializar banco de dados
    db.init_app(app)

    # Inicializar Flask-Migrate
    Migrate(app, db)

    init_db(app)

    # Serviço de execução, injetado nas rotas via app.extensions
    from app.services.flow_execution_service import FlowExecutionService
    from app.services.flow_store import FlowStore
    app.extensions['flow_execution_service'] = FlowExecutionService.from_config(
        app.config, source=FlowStore()
    )

    from app.routes import flows
    app.register_blueprint(flows.flows_bp)

    return app
