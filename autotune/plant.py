"""
Simulated Balancing Robot
=========================

Two-wheeled inverted pendulum driven through the same PlantLink
interface as the real robot, so tuning sessions can run without
hardware.

Dynamics (pitch theta, wheel acceleration a):
    theta_dd = (g/l) sin(theta) - (a/l) cos(theta) - c theta_d
    x_dd     = a

with:
- First-order motor lag and acceleration saturation
- Ornstein-Uhlenbeck sensor noise on the pitch measurement
- Periodic push disturbances
- Balance PID, with optional speed and position loops cascaded on top
- Relay (bang-bang) test mode for the Ziegler-Nichols tuner
- Tilt limit: past ``fall_angle`` the plant reports an emergency and
  re-levels itself
"""

import asyncio
import logging
import math
import random
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from .gains import GainTriple, LoopSelector
from .link import PlantLink


logger = logging.getLogger(__name__)


@dataclass
class RobotParams:
    """Physical parameters of the robot."""
    pendulum_length: float = 0.12   # m, axle to centre of mass
    g: float = 9.81                 # m/s^2
    damping: float = 0.05           # 1/s

    # Actuator
    output_scale: float = 0.01      # (m/s^2) per unit of controller output
    max_acceleration: float = 8.0   # m/s^2
    motor_time_constant: float = 0.03  # s

    # Safety
    fall_angle: float = 45.0        # deg

    # Disturbances
    push_interval: float = 1.0      # s
    push_magnitude: float = 0.3     # rad/s added to pitch rate


@dataclass
class SensorNoiseParams:
    """Ornstein-Uhlenbeck process parameters for sensor noise."""
    theta: float = 0.15  # mean reversion rate
    mu: float = 0.0      # long-term mean
    sigma: float = 0.05  # volatility (deg)


class OrnsteinUhlenbeckNoise:
    """
    Ornstein-Uhlenbeck process for realistic sensor drift modeling.

    dx = theta(mu - x)dt + sigma dW
    """

    def __init__(self, params: SensorNoiseParams, dt: float, seed: Optional[int] = None):
        self.params = params
        self.dt = dt
        self.x = 0.0
        self.rng = np.random.default_rng(seed)

    def sample(self) -> float:
        p = self.params
        self.x += p.theta * (p.mu - self.x) * self.dt + p.sigma * math.sqrt(self.dt) * self.rng.normal()
        return self.x

    def reset(self):
        self.x = 0.0


class PIDController:
    """
    PID controller as run by the robot firmware.

    Features:
        - Low-pass filtered derivative on error
        - Output clamping
        - Anti-windup via back-calculation
    """

    def __init__(
        self,
        gains: GainTriple = GainTriple(),
        output_limits: Tuple[float, float] = (-math.inf, math.inf),
        derivative_filter_tau: float = 0.01,
        anti_windup_gain: float = 1.0
    ):
        self.gains = gains
        self.output_min, self.output_max = output_limits
        self.tau_d = derivative_filter_tau
        self.kb = anti_windup_gain
        self.reset()

    def reset(self):
        self._integral = 0.0
        self._prev_error = None
        self._filtered_derivative = 0.0

    def set_gains(self, gains: GainTriple):
        self.gains = gains

    @property
    def active(self) -> bool:
        g = self.gains
        return bool(g.kp or g.ki or g.kd)

    def compute(self, error: float, dt: float) -> float:
        kp, ki, kd = self.gains.kp, self.gains.ki, self.gains.kd

        self._integral += ki * error * dt

        d_input = 0.0 if self._prev_error is None else (error - self._prev_error) / dt
        self._prev_error = error
        alpha = dt / (self.tau_d + dt)
        self._filtered_derivative = (1 - alpha) * self._filtered_derivative + alpha * d_input

        output_raw = kp * error + self._integral + kd * self._filtered_derivative
        output = min(self.output_max, max(self.output_min, output_raw))
        if output != output_raw:
            self._integral += self.kb * (output - output_raw)
        return output


class BalancingRobotDynamics:
    """Inverted pendulum on wheels, integrated with semi-implicit Euler."""

    def __init__(
        self,
        params: Optional[RobotParams] = None,
        dt: float = 0.002,
        enable_noise: bool = True,
        noise_params: Optional[SensorNoiseParams] = None,
        seed: Optional[int] = None
    ):
        self.params = params or RobotParams()
        self.dt = dt
        self.enable_noise = enable_noise
        self.noise = OrnsteinUhlenbeckNoise(noise_params or SensorNoiseParams(), dt, seed)

        # [theta (rad), theta_dot, x (m), x_dot]
        self.state = np.zeros(4)
        self.motor_state = 0.0
        self.time = 0.0

    def reset(self, initial_angle: float = 0.0):
        """Reset to rest at ``initial_angle`` degrees."""
        self.state = np.zeros(4)
        self.state[0] = math.radians(initial_angle)
        self.motor_state = 0.0
        self.time = 0.0
        self.noise.reset()

    def motor_dynamics(self, command: float) -> float:
        """tau * da/dt = a_cmd - a"""
        p = self.params
        command = min(p.max_acceleration, max(-p.max_acceleration, command))
        alpha = self.dt / (p.motor_time_constant + self.dt)
        self.motor_state = (1 - alpha) * self.motor_state + alpha * command
        return self.motor_state

    def step(self, acceleration_command: float) -> None:
        p = self.params
        a = self.motor_dynamics(acceleration_command)
        theta, theta_dot = self.state[0], self.state[1]

        theta_dd = (p.g / p.pendulum_length) * math.sin(theta) \
            - (a / p.pendulum_length) * math.cos(theta) - p.damping * theta_dot

        self.state[1] += theta_dd * self.dt
        self.state[0] += self.state[1] * self.dt
        self.state[3] += a * self.dt
        self.state[2] += self.state[3] * self.dt
        self.time += self.dt

    def push(self, magnitude: float) -> None:
        self.state[1] += magnitude

    @property
    def pitch(self) -> float:
        """True pitch in degrees."""
        return math.degrees(self.state[0])

    @property
    def measured_pitch(self) -> float:
        if self.enable_noise:
            return self.pitch + self.noise.sample()
        return self.pitch

    @property
    def speed(self) -> float:
        return float(self.state[3])

    @property
    def position(self) -> float:
        return float(self.state[2])


class SimulatedPlant(PlantLink):
    """
    PlantLink backed by BalancingRobotDynamics.

    Call ``start()`` inside a running event loop; telemetry is then
    published at ``telemetry_rate`` Hz in wall-clock time.
    """

    def __init__(
        self,
        params: Optional[RobotParams] = None,
        dt: float = 0.002,
        telemetry_rate: float = 100.0,
        enable_noise: bool = True,
        seed: Optional[int] = None,
        gains: Optional[Dict[LoopSelector, GainTriple]] = None
    ):
        super().__init__()
        self.robot = BalancingRobotDynamics(params, dt=dt, enable_noise=enable_noise, seed=seed)
        self.telemetry_rate = telemetry_rate
        self._rng = random.Random(seed)

        self.controllers = {
            LoopSelector.BALANCE: PIDController(output_limits=(-1000.0, 1000.0)),
            LoopSelector.SPEED: PIDController(output_limits=(-10.0, 10.0)),
            LoopSelector.POSITION: PIDController(output_limits=(-1.0, 1.0)),
        }
        initial = {LoopSelector.BALANCE: GainTriple(kp=40.0, ki=0.0, kd=2.0)}
        initial.update(gains or {})
        for loop, g in initial.items():
            self.controllers[loop].set_gains(g)

        self._keys = {}
        for loop in LoopSelector:
            for name, key in zip(('kp', 'ki', 'kd'), loop.param_keys):
                self._keys[key] = (loop, name)

        self.relay_amplitude: Optional[float] = None
        self.relay_duration = 20.0
        self._relay_start = 0.0
        self._next_push = self.robot.params.push_interval
        self._task: Optional[asyncio.Task] = None
        self.commands = []
        self.emergencies = 0

    # --- PlantLink ------------------------------------------------------------------

    def send_command(self, type: str, payload: dict) -> None:
        self.commands.append((type, dict(payload)))
        if type == 'set_param':
            self._set_param(payload['key'], float(payload['value']))
        elif type == 'run_relay_test':
            self.relay_amplitude = float(payload.get('amplitude', 2.0))
            self._relay_start = self.robot.time
            logger.debug("Relay test started, amplitude=%.3f", self.relay_amplitude)
        elif type == 'cancel_test':
            self.relay_amplitude = None
        else:
            logger.debug("Ignoring unsupported command %s", type)

    def _set_param(self, key: str, value: float) -> None:
        if key not in self._keys:
            logger.debug("Ignoring unknown parameter %s", key)
            return
        loop, name = self._keys[key]
        controller = self.controllers[loop]
        g = controller.gains.to_dict()
        g[name] = value
        controller.set_gains(GainTriple(**g))

    def get_gains(self, loop: LoopSelector = LoopSelector.BALANCE) -> GainTriple:
        return self.controllers[loop].gains

    # --- simulation loop ---------------------------------------------------------------

    def start(self) -> asyncio.Task:
        self.robot.reset()
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        event_loop = asyncio.get_running_loop()
        period = 1.0 / self.telemetry_rate
        substeps = max(1, int(round(period / self.robot.dt)))
        deadline = event_loop.time()
        while True:
            for _ in range(substeps):
                self.step()
            self.publish()
            deadline += period
            await asyncio.sleep(max(0.0, deadline - event_loop.time()))

    def step(self) -> None:
        """Advance physics and control by one dt."""
        robot = self.robot
        p = robot.params
        dt = robot.dt
        pitch = robot.measured_pitch

        if robot.time >= self._next_push:
            robot.push(self._rng.choice((-1.0, 1.0)) * p.push_magnitude)
            self._next_push += p.push_interval

        if self.relay_amplitude is not None:
            # Relay replaces P and I; the D path keeps the robot catchable
            error = -pitch
            relay = self.relay_amplitude if error > 0 else -self.relay_amplitude
            balance = self.controllers[LoopSelector.BALANCE]
            output = relay + balance.gains.kd * (-math.degrees(robot.state[1]))
        else:
            output = self.control_output(pitch, dt)

        robot.step(-output * p.output_scale)

        if abs(robot.pitch) > p.fall_angle:
            self._emergency('tilt_limit')

    def control_output(self, pitch: float, dt: float) -> float:
        position = self.controllers[LoopSelector.POSITION]
        speed = self.controllers[LoopSelector.SPEED]
        balance = self.controllers[LoopSelector.BALANCE]

        target_speed = position.compute(-self.robot.position, dt) if position.active else 0.0
        target_angle = speed.compute(target_speed - self.robot.speed, dt) if speed.active else 0.0
        return balance.compute(target_angle - pitch, dt)

    def _emergency(self, reason: str) -> None:
        self.emergencies += 1
        angle = self.robot.pitch
        logger.warning("Simulated robot fell (pitch %.1f deg), re-leveling", angle)
        relay_active = self.relay_amplitude is not None
        self.relay_amplitude = None
        self.robot.reset()
        self._next_push = self.robot.params.push_interval
        for controller in self.controllers.values():
            controller.reset()
        self.notify('emergency', {'type': 'emergency', 'reason': reason, 'angle': angle})
        if relay_active:
            self.notify('test_complete', {'type': 'test_complete', 'success': False, 'reason': reason})

    def publish(self) -> None:
        robot = self.robot
        pitch = robot.measured_pitch
        self.notify('telemetry', {
            'type': 'telemetry',
            'pitch': pitch,
            'speed': robot.speed,
            'loop_time': 1000.0 / self.telemetry_rate,
        })
        if self.relay_amplitude is not None:
            elapsed = robot.time - self._relay_start
            self.notify('relay_state', {
                'type': 'relay_state',
                'time': elapsed,
                'angle': pitch,
                'relay_output': self.relay_amplitude if pitch < 0 else -self.relay_amplitude,
            })
            if elapsed >= self.relay_duration:
                self.relay_amplitude = None
                self.notify('test_complete', {'type': 'test_complete', 'success': True})
