"""
Flow Store - SQLAlchemy persistence for flows and environments

Implements the FlowSource lookups the execution service needs
(get_flow_config, get_environment_variables) plus simple CRUD used
by the REST layer.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from app.database import db
from app.flow_engine.errors import ErrorCode, FlowPlanningError
from app.flow_engine.models import FlowConfig
from app.models.flow import Environment, Flow

logger = logging.getLogger(__name__)


def _parse_id(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class FlowStore:
    """
    Usage:
        store = FlowStore()
        flow = store.create_flow({'name': 'Login', 'nodes': [...], 'edges': [...]})
        config = store.get_flow_config(str(flow.id))
    """

    def create_flow(self, data: Mapping[str, Any]) -> Flow:
        """
        Validate and persist a flow document.

        Raises:
            FlowPlanningError: if the document does not parse into a FlowConfig
        """
        if not data.get('name'):
            raise FlowPlanningError("name is required", ErrorCode.FLOW_VALIDATION_ERROR)

        # Parse first so invalid graphs never reach the database
        config = FlowConfig.from_dict(data)
        document = config.to_dict()

        flow = Flow(
            name=config.name,
            description=config.description,
            is_active=config.is_active,
            nodes=document['nodes'],
            edges=document['edges'],
            variables=document['variables'],
        )
        try:
            db.session.add(flow)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Created flow: {flow.id} - {flow.name}")
        return flow

    def get_flow_details(self, flow_id: Any) -> Optional[Flow]:
        key = _parse_id(flow_id)
        if key is None:
            return None
        return db.session.get(Flow, key)

    def list_flows(self, active_only: bool = False) -> List[Flow]:
        query = Flow.query
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(Flow.created_at.desc()).all()

    def delete_flow(self, flow_id: Any) -> bool:
        flow = self.get_flow_details(flow_id)
        if flow is None:
            return False
        try:
            db.session.delete(flow)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info(f"Deleted flow: {flow_id}")
        return True

    def get_flow_config(self, flow_id: str) -> Optional[FlowConfig]:
        flow = self.get_flow_details(flow_id)
        if flow is None:
            return None
        return FlowConfig.from_dict(flow.to_document())

    def create_environment(self, name: str, variables: Optional[Dict[str, Any]] = None) -> Environment:
        environment = Environment(name=name, variables=dict(variables or {}))
        try:
            db.session.add(environment)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info(f"Created environment: {environment.id} - {name}")
        return environment

    def get_environment_variables(self, environment_id: str) -> Optional[Dict[str, Any]]:
        key = _parse_id(environment_id)
        if key is None:
            return None
        environment = db.session.get(Environment, key)
        if environment is None:
            return None
        return dict(environment.variables or {})
