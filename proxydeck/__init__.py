"""ProxyDeck: local companion for the CLIProxyAPI sidecar."""
