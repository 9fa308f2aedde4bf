"""
JAX Configuration - MUST be imported before any JAX imports.

This module sets environment variables for JAX configuration including:
- Double precision for autodiff derivatives and R-hat
- CPU platform unless the caller chose one
- Persistent compilation cache directory
"""
import os
from pathlib import Path

# --- PRECISION ---
# Derivatives are stored in float64 NumPy state fields
os.environ.setdefault("JAX_ENABLE_X64", "True")

# --- PLATFORM ---
# Sampling loops run on the host; derivative calls are small
os.environ.setdefault("JAX_PLATFORMS", "cpu")
os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")

# --- PERSISTENT COMPILATION CACHE ---
_JAX_CACHE_DIR = Path.home() / ".cache" / "jax" / "mcgraph_cache"
_JAX_CACHE_DIR.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("JAX_COMPILATION_CACHE_DIR", str(_JAX_CACHE_DIR))
os.environ.setdefault("JAX_PERSISTENT_CACHE_MIN_COMPILE_TIME_SECS", "1.0")
