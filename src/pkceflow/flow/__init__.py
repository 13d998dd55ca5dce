"""The OAuth 2.0 authorization-code flow with PKCE.

* :mod:`~pkceflow.flow.authorization` -- authorization request URLs.
* :mod:`~pkceflow.flow.callback` -- redirect URL parsing.
* :mod:`~pkceflow.flow.token_endpoint` -- code exchange and refresh grants.
* :mod:`~pkceflow.flow.refresh` -- expiry-aware single-flight refresh.
* :mod:`~pkceflow.flow.manager` -- :class:`OAuthFlow`, the public surface.
"""
