import numpy as np


def circular_track(radius=40.0, points=400):
    theta = np.linspace(0, 2*np.pi, points)
    center = np.vstack([radius*np.sin(theta), radius*(1 - np.cos(theta))]).T
    return center


def sinusoidal_track(length=300.0, amplitude=12.0, points=600):
    """
    Create a sinusoidal road centerline starting at the origin, heading along +x

    Args:
        length: Total length of the road (meters)
        amplitude: Amplitude of the sinusoid (meters)
        points: Number of points along the centerline

    Returns:
        center: Road centerline points [N, 2]
    """
    x = np.linspace(0, length, points)
    y = amplitude * np.sin(2 * np.pi * x / length)
    center = np.vstack([x, y]).T
    return center


TRACKS = {
    "sine": sinusoidal_track,
    "circle": circular_track,
}


def nearest_index(center, position):
    return int(np.argmin(np.linalg.norm(center - np.asarray(position)[:2], axis=1)))


def lookahead_waypoints(center, position, count=8, spacing=3):
    """
    Waypoints ahead of the vehicle, the first one at the closest centerline point

    Args:
        center: Road centerline points [N, 2]
        position: Vehicle (x, y)
        count: Number of waypoints to return
        spacing: Index stride between returned waypoints

    Returns:
        waypoints: [count, 2], fewer near the end of an open track
    """
    idx = nearest_index(center, position)
    indices = idx + spacing * np.arange(count)
    return center[indices[indices < len(center)]]
