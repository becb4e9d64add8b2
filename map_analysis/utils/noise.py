"""
Coherent Noise

Vectorized 2D gradient (Perlin) noise and its fractal sum, used to give
synthetic terrain height fields natural-looking detail.
"""

import numpy as np
from typing import Optional


def _fade(t: np.ndarray) -> np.ndarray:
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def perlin_noise(width: int,
                 height: int,
                 frequency: float,
                 rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Single octave of 2D Perlin noise.

    Args:
        width: Output width in pixels
        height: Output height in pixels
        frequency: Number of gradient cells across the field
        rng: Random generator for the gradient lattice

    Returns:
        (height, width) float32 field in [0, 1]
    """
    rng = rng if rng is not None else np.random.default_rng()
    frequency = max(float(frequency), 1e-6)

    cells = int(np.ceil(frequency)) + 2
    angles = rng.uniform(0.0, 2.0 * np.pi, size=(cells, cells))
    grad_x = np.cos(angles)
    grad_y = np.sin(angles)

    xs = np.arange(width, dtype=np.float64) / max(width, 1) * frequency
    ys = np.arange(height, dtype=np.float64) / max(height, 1) * frequency
    px, py = np.meshgrid(xs, ys)

    x0 = np.floor(px).astype(int)
    y0 = np.floor(py).astype(int)
    fx = px - x0
    fy = py - y0

    def corner(dx: int, dy: int) -> np.ndarray:
        gx = grad_x[y0 + dy, x0 + dx]
        gy = grad_y[y0 + dy, x0 + dx]
        return gx * (fx - dx) + gy * (fy - dy)

    u = _fade(fx)
    v = _fade(fy)

    top = corner(0, 0) * (1.0 - u) + corner(1, 0) * u
    bottom = corner(0, 1) * (1.0 - u) + corner(1, 1) * u
    value = top * (1.0 - v) + bottom * v

    # Gradient noise lies within [-sqrt(0.5), sqrt(0.5)]
    normalized = (value / np.sqrt(0.5) + 1.0) * 0.5
    return np.clip(normalized, 0.0, 1.0).astype(np.float32)


def fractal_noise(width: int,
                  height: int,
                  scale: float = 4.0,
                  octaves: int = 4,
                  persistence: float = 0.5,
                  lacunarity: float = 2.0,
                  rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Sum several octaves of Perlin noise.

    Args:
        width: Output width in pixels
        height: Output height in pixels
        scale: Base frequency of the first octave
        octaves: Number of layers to combine
        persistence: Amplitude multiplier per octave
        lacunarity: Frequency multiplier per octave
        rng: Random generator

    Returns:
        (height, width) float32 field normalized to [0, 1]
    """
    if width <= 0 or height <= 0:
        raise ValueError("Noise dimensions must be positive")
    if octaves < 1:
        raise ValueError("octaves must be at least 1")

    rng = rng if rng is not None else np.random.default_rng()

    total = np.zeros((height, width), dtype=np.float64)
    frequency = scale
    amplitude = 1.0
    max_value = 0.0

    for _ in range(octaves):
        total += perlin_noise(width, height, frequency, rng) * amplitude
        max_value += amplitude
        amplitude *= persistence
        frequency *= lacunarity

    return np.clip(total / max_value, 0.0, 1.0).astype(np.float32)
