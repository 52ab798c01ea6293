"""
Telemetria de execuções de flows.

Envia eventos para o Honeycomb quando configurado; caso contrário, registra no log.
"""

import logging
import os
from typing import Dict, Any, Optional
from datetime import datetime

import requests

logger = logging.getLogger(__name__)

HONEYCOMB_EVENTS_URL = 'https://api.honeycomb.io/1/events/{dataset}'


class TelemetryService:
    """
    Serviço para enviar métricas e eventos de telemetria.
    Providers: log (padrão) e honeycomb.
    """

    def __init__(self, enabled: Optional[bool] = None, provider: Optional[str] = None,
                 api_key: Optional[str] = None, dataset: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        if enabled is None:
            enabled = os.getenv('TELEMETRY_ENABLED', 'true').lower() == 'true'
        self.enabled = enabled
        self.provider = provider or os.getenv('TELEMETRY_PROVIDER', 'log')
        self.api_key = api_key if api_key is not None else os.getenv('HONEYCOMB_API_KEY')
        self.dataset = dataset or os.getenv('HONEYCOMB_DATASET', 'gassapi-flows')
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'TelemetryService':
        return cls(
            enabled=config.get('TELEMETRY_ENABLED', True),
            provider=config.get('TELEMETRY_PROVIDER', 'log'),
            api_key=config.get('HONEYCOMB_API_KEY') or None,
            dataset=config.get('HONEYCOMB_DATASET'),
        )

    def track_event(self, event_name: str, properties: Dict[str, Any],
                    severity: str = 'info'):
        """
        Envia um evento de telemetria.

        Args:
            event_name: Nome do evento
            properties: Propriedades/atributos do evento
            severity: Nível de severidade (debug, info, warning, error)
        """
        if not self.enabled:
            return

        event_data = {
            'event': event_name,
            'timestamp': datetime.utcnow().isoformat(),
            'severity': severity,
            **properties
        }

        if self.provider == 'honeycomb' and self.api_key:
            self._send_to_honeycomb(event_data)
        else:
            log_func = getattr(logger, severity, logger.info)
            log_func(f"Telemetry: {event_name} {properties}")

    def _send_to_honeycomb(self, event_data: Dict[str, Any]):
        # Telemetry never breaks a flow run
        try:
            response = self.session.post(
                HONEYCOMB_EVENTS_URL.format(dataset=self.dataset),
                headers={
                    'X-Honeycomb-Team': self.api_key,
                    'Content-Type': 'application/json'
                },
                json=event_data,
                timeout=5
            )
            if response.status_code != 200:
                logger.warning(f'Honeycomb rejected event: {response.status_code}')
        except requests.RequestException as e:
            logger.warning(f'Failed to send telemetry to Honeycomb: {str(e)}')

    def track_flow_execution(self, flow_id: str, status: str, execution_time_ms: int,
                             total_nodes: int, failed_nodes: int,
                             environment_id: Optional[str] = None):
        """
        Rastreia execução de flow.
        """
        self.track_event('flow_executed', {
            'flow_id': flow_id,
            'status': status,
            'execution_time_ms': execution_time_ms,
            'total_nodes': total_nodes,
            'failed_nodes': failed_nodes,
            'environment_id': environment_id,
        }, severity='error' if status in ('failed', 'timeout') else 'info')

    def track_node_error(self, flow_id: str, node_id: str, error_code: str,
                         error_message: str):
        self.track_event('flow_node_failed', {
            'flow_id': flow_id,
            'node_id': node_id,
            'error_code': error_code,
            'error_message': error_message,
        }, severity='warning')
