"""worksite.integrations — External service gateway modules.

All outbound HTTP calls to third-party APIs must go through a gateway in this
package, never via bare `requests` calls in services or blueprints.

Every call is:
  - Authenticated (API key injected by the gateway)
  - Retried with exponential backoff
  - Circuit-broken to prevent cascade failures

Current gateways:
  knowledge_gateway.KnowledgeGateway — knowledge-base content sync API
"""
