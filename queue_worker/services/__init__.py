# Services used by the domain job handlers
