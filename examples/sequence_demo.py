#!/usr/bin/env python3
"""
Headless demo: a random swarm spells out a word, then a logo, then loops.
"""

import io

import numpy as np
from PIL import Image, ImageDraw

from py_formation import FormationEngine, MotionParams, Particle, configure_logging

WIDTH, HEIGHT = 640, 360
FRAME_MS = 1000.0 / 60.0


def ring_logo(size=160):
    """PNG bytes of a filled ring, standing in for a logo file."""
    image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.ellipse((8, 8, size - 8, size - 8), fill=(255, 120, 0, 255))
    draw.ellipse((48, 48, size - 48, size - 48), fill=(0, 0, 0, 0))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def main():
    """Play a looping two-step sequence for ten simulated seconds."""
    configure_logging()
    print("Py-Formation Sequence Demo")
    print("=" * 40)

    rng = np.random.default_rng(7)
    particles = [
        Particle(float(x), float(y), vx=float(vx), vy=float(vy))
        for (x, y), (vx, vy) in zip(
            rng.uniform((0, 0), (WIDTH, HEIGHT), size=(1200, 2)),
            rng.normal(0, 1, size=(1200, 2)),
        )
    ]

    with FormationEngine(MotionParams(max_speed=12.0), canvas_size=(WIDTH, HEIGHT)) as engine:
        engine.load_formation(
            "hello",
            {"text": "HELLO", "font_size": 120, "resolution": 5},
            hold_duration_ms=1500,
            transition_duration_ms=1500,
            stagger_ms=40,
        )
        engine.load_formation(
            "logo",
            {"kind": "image", "source": ring_logo(), "resolution": 5, "color_sampling": True},
            hold_duration_ms=1500,
            easing="ease_out_expo",
        )
        engine.play_sequence(["hello", "logo"], loop=True, loop_delay_ms=500, particles=particles)

        scale = FRAME_MS / engine.motion.params.reference_frame_ms
        last_state = None
        for frame in range(600):
            result = engine.tick(particles, FRAME_MS)
            for p in particles:
                # Idle particles drift with a little friction
                if p.assigned_target is None:
                    p.vx *= 0.99
                    p.vy *= 0.99
                p.x += p.vx * scale
                p.y += p.vy * scale

            snap = result.snapshot
            state = (snap.status, snap.formation_id, snap.formation_state)
            if state != last_state:
                phase = snap.formation_state.value if snap.formation_state else "-"
                print(f"  t={frame * FRAME_MS / 1000:5.2f}s  {snap.status.value:<10} "
                      f"{snap.formation_id or '-':<6} {phase:<12} "
                      f"arrived {result.arrived}/{result.assigned}")
                last_state = state


if __name__ == "__main__":
    main()
