"""BLE session manager and CLI for aromatizador scent diffusers."""
