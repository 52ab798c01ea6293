"""
Flow Models - Persisted flow documents and environments
"""
from app.database import db
from sqlalchemy.dialects.postgresql import UUID, JSONB
from datetime import datetime
import uuid

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONDocument = db.JSON().with_variant(JSONB(), 'postgresql')


class Flow(db.Model):
    """
    Flow - API test flow definition

    nodes/edges hold the same JSON documents the engine parses with
    FlowConfig.from_dict.
    """
    __tablename__ = 'flow'

    id = db.Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Graph
    nodes = db.Column(JSONDocument, nullable=False, default=list)
    edges = db.Column(JSONDocument, nullable=False, default=list)

    # Default variables, overridden by environment and request
    variables = db.Column(JSONDocument, nullable=False, default=dict)

    def to_document(self):
        """Engine-facing document."""
        return {
            'id': str(self.id),
            'name': self.name,
            'description': self.description,
            'isActive': self.is_active,
            'nodes': list(self.nodes or []),
            'edges': list(self.edges or []),
            'variables': dict(self.variables or {}),
        }

    def to_dict(self, include_graph=False):
        data = {
            'id': str(self.id),
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active,
            'node_count': len(self.nodes or []),
            'edge_count': len(self.edges or []),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_graph:
            data['nodes'] = self.nodes or []
            data['edges'] = self.edges or []
            data['variables'] = self.variables or {}
        return data

    def __repr__(self):
        return f'<Flow {self.name}>'


class Environment(db.Model):
    """Environment - named variable set (baseUrl, tokens, ...) applied to a run"""
    __tablename__ = 'environment'

    id = db.Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    name = db.Column(db.String(255), nullable=False, unique=True)
    variables = db.Column(JSONDocument, nullable=False, default=dict)

    def to_dict(self):
        return {
            'id': str(self.id),
            'name': self.name,
            'variables': self.variables or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Environment {self.name}>'
