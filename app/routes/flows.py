"""
Flows API - Routes for managing and running API test flows

Endpoints:
- GET /api/v1/flows - List flows
- POST /api/v1/flows - Create flow
- GET /api/v1/flows/:id - Get flow details
- DELETE /api/v1/flows/:id - Delete flow
- POST /api/v1/flows/:id/execute - Execute a stored flow
- POST /api/v1/flows/execute - Execute an inline flow document
- POST /api/v1/flows/validate - Validate and plan a flow document
- POST /api/v1/flows/expressions/test - Check a condition expression
"""

from flask import Blueprint, current_app, request, jsonify
import logging

from app.flow_engine.errors import ExecutionError, FlowPlanningError
from app.services.flow_execution_service import EnvironmentNotFoundError, FlowNotFoundError
from app.services.flow_store import FlowStore

logger = logging.getLogger(__name__)

flows_bp = Blueprint('flows', __name__, url_prefix='/api/v1/flows')


def get_execution_service():
    return current_app.extensions['flow_execution_service']


@flows_bp.route('', methods=['GET'])
def list_flows():
    """
    List flows.

    Query params:
        active: only active flows when "true"
    """
    active_only = request.args.get('active', '').lower() == 'true'
    flows = FlowStore().list_flows(active_only=active_only)

    return jsonify({
        'flows': [f.to_dict() for f in flows],
        'count': len(flows)
    }), 200


@flows_bp.route('', methods=['POST'])
def create_flow():
    """
    Create a new flow.

    Body:
        {
            "name": "Login flow",
            "description": "optional",
            "nodes": [...],
            "edges": [...],
            "variables": {...}
        }
    """
    data = request.get_json(silent=True) or {}

    if not data.get('name'):
        return jsonify({'error': 'name is required'}), 400

    try:
        flow = FlowStore().create_flow(data)
        return jsonify(flow.to_dict(include_graph=True)), 201

    except FlowPlanningError as e:
        return jsonify({'error': e.message, 'details': e.to_dict()}), 400
    except Exception as e:
        logger.error(f"Error creating flow: {e}")
        return jsonify({'error': str(e)}), 500


@flows_bp.route('/<flow_id>', methods=['GET'])
def get_flow(flow_id):
    """Get flow details including its graph."""
    flow = FlowStore().get_flow_details(flow_id)
    if not flow:
        return jsonify({'error': 'Flow not found'}), 404

    return jsonify(flow.to_dict(include_graph=True)), 200


@flows_bp.route('/<flow_id>', methods=['DELETE'])
def delete_flow(flow_id):
    """Delete a flow."""
    try:
        if not FlowStore().delete_flow(flow_id):
            return jsonify({'error': 'Flow not found'}), 404

        return jsonify({'message': 'Flow deleted successfully'}), 200

    except Exception as e:
        logger.error(f"Error deleting flow: {e}")
        return jsonify({'error': str(e)}), 500


@flows_bp.route('/<flow_id>/execute', methods=['POST'])
async def execute_flow(flow_id):
    """
    Execute a stored flow.

    Body:
        {
            "environment_id": "uuid",          # optional
            "variables": {...},                # overrides
            "options": {"stopOnError": true, "timeout": 60000, "debugMode": false}
        }
    """
    data = request.get_json(silent=True) or {}
    return await _run(flow_id, data)


@flows_bp.route('/execute', methods=['POST'])
async def execute_inline_flow():
    """
    Execute a flow document without storing it.

    Body:
        {"flow": {"id": ..., "nodes": [...], "edges": [...]}, "variables": {...}, "options": {...}}
    """
    data = request.get_json(silent=True) or {}
    flow = data.get('flow')
    if not isinstance(flow, dict):
        return jsonify({'error': 'flow is required'}), 400

    return await _run(flow, data)


async def _run(flow, data):
    variables = data.get('variables') or {}
    options = data.get('options') or {}
    if not isinstance(variables, dict) or not isinstance(options, dict):
        return jsonify({'error': 'variables and options must be objects'}), 400

    try:
        result, summary = await get_execution_service().execute_flow(
            flow,
            environment_id=data.get('environment_id'),
            override_variables=variables,
            options=options,
        )
    except (FlowNotFoundError, EnvironmentNotFoundError) as e:
        return jsonify({'error': str(e)}), 404
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error executing flow: {e}")
        return jsonify({'error': str(e)}), 500

    logger.info(f"Flow {result.flow_id} executed with status {result.status.value}")

    return jsonify({
        'result': result.to_dict(),
        'summary': summary,
    }), 200


@flows_bp.route('/validate', methods=['POST'])
def validate_flow():
    """
    Validate a flow document and, when valid, return its execution plan.

    Body:
        {"flow": {...}}  or the flow document itself
    """
    data = request.get_json(silent=True) or {}
    document = data.get('flow') if isinstance(data.get('flow'), dict) else data

    service = get_execution_service()
    validation = service.validate_flow(document)
    response = validation.to_dict()

    if validation.valid:
        try:
            response['plan'] = service.plan_flow(document).to_dict()
        except ExecutionError as e:
            response['valid'] = False
            response['errors'].append(e.to_dict())

    return jsonify(response), 200


@flows_bp.route('/expressions/test', methods=['POST'])
def check_expression():
    """
    Check an expression's syntax, optionally evaluating it.

    Body:
        {"expression": "login.response.status == 200", "context": {...}}
    """
    data = request.get_json(silent=True) or {}
    expression = data.get('expression')
    if expression is None:
        return jsonify({'error': 'expression is required'}), 400

    service = get_execution_service()
    response = service.test_expression(expression)

    context = data.get('context')
    if response['valid'] and isinstance(context, dict):
        try:
            response['result'] = service.expressions.evaluate(expression, context)
        except ExecutionError as e:
            response['valid'] = False
            response['error'] = e.message
            response['code'] = e.code.value

    return jsonify(response), 200
