"""aiohttp server for the calboard display API."""
