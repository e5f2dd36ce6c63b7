#!/usr/bin/env python3
# NUT Client - MQTT Bridge
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Connects to a NUT server, watches a UPS for power events, and publishes its
# variables and power state to an MQTT broker for HomeAssistant integration.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""
MQTT Bridge for NUT UPS devices
Publishes UPS status data for HomeAssistant integration

This bridge watches a UPS through nutclient.Monitor and publishes:
- availability (online/offline) whenever the NUT connection comes and goes
- power source (mains/battery) on every power lost / power restored event
- a JSON state document built from LIST VAR every interval
- HomeAssistant discovery configs for the common variables

Usage:
    scripts/mqtt_client.py --nut-addr nas:3493 --ups ups --broker mqtt.local --interval 10

Broker credentials may also be given through MQTT_USERNAME / MQTT_PASSWORD.
"""

import argparse
import json
import logging
import os
import signal
import sys
import time

import paho.mqtt.client as mqtt

# Add parent directory to path so we can import nutclient
sys.path.insert(0, '.')

from nutclient import Monitor, MonitorConfig, NUTError

log = logging.getLogger(__name__)

# Sensor definitions: NUT variable -> (discovery id, name, unit, device class)
SENSORS = {
    "battery.charge": ("battery_charge", "UPS Battery Charge", "%", "battery"),
    "battery.runtime": ("battery_runtime", "UPS Battery Runtime", "s", "duration"),
    "battery.voltage": ("battery_voltage", "UPS Battery Voltage", "V", "voltage"),
    "input.voltage": ("input_voltage", "UPS Input Voltage", "V", "voltage"),
    "output.voltage": ("output_voltage", "UPS Output Voltage", "V", "voltage"),
    "ups.load": ("load", "UPS Load", "%", "power_factor"),
    "ups.realpower": ("realpower", "UPS Real Power", "W", "power"),
    "ups.status": ("status", "UPS Status", None, None),
}


class NutMQTTBridge:
    def __init__(self, nut_addr, ups_name, broker, port=1883, username=None, password=None,
                 reconnect_interval=30.0, poll_interval=10.0):
        self.ups_name = ups_name
        self.broker = broker
        self.mqtt_port = port
        self.username = username
        self.password = password
        self.running = True

        self.base_topic = f"ups/{ups_name}"
        self.availability_topic = f"{self.base_topic}/availability"
        self.state_topic = f"{self.base_topic}/state"
        self.power_topic = f"{self.base_topic}/power"
        self.device_config = {
            "identifiers": [f"nut_{ups_name}"],
            "name": f"UPS {ups_name}",
            "manufacturer": "Network UPS Tools",
        }

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=f"nut_{ups_name}_bridge")
        self.client.on_connect = self.on_connect
        self.client.on_disconnect = self.on_disconnect

        # Monitor callbacks run on nutclient's threads; they only publish.
        self.monitor = Monitor(MonitorConfig(
            addr=nut_addr,
            name=ups_name,
            reconnect_interval=reconnect_interval,
            poll_interval=poll_interval,
            connected_fn=self.on_ups_connected,
            disconnected_fn=self.on_ups_disconnected,
            power_lost_fn=self.on_power_lost,
            power_restored_fn=self.on_power_restored,
        ))

    def on_connect(self, client, userdata, connect_flags, reason_code, properties):
        """Callback for when the client connects to the broker"""
        if reason_code == 0:
            log.info(f"Connected to MQTT broker at {self.broker}:{self.mqtt_port}")
            self.publish_config()
            self.publish_availability(self.monitor.connected)
        else:
            log.error(f"Failed to connect to MQTT broker, return code {reason_code}")

    def on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """Callback for when the client disconnects from the broker"""
        log.info(f"Disconnected from MQTT broker (code: {reason_code})")

    def on_ups_connected(self):
        log.info("UPS connected")
        self.publish_availability(True)

    def on_ups_disconnected(self):
        error_msg = self.monitor.get_connection_status().get("last_error") or "Unknown error"
        log.info(f"UPS disconnected: {error_msg}")
        self.publish_availability(False)

    def on_power_lost(self):
        log.warning("Power lost: UPS running on battery")
        self.client.publish(self.power_topic, "battery", qos=1, retain=True)

    def on_power_restored(self):
        log.info("Power restored: UPS back on mains")
        self.client.publish(self.power_topic, "mains", qos=1, retain=True)

    def publish_availability(self, online):
        payload = "online" if online else "offline"
        result = self.client.publish(self.availability_topic, payload, qos=1, retain=True)
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            log.debug(f"Published: {self.availability_topic} = {payload}")
        else:
            log.error(f"ERROR publishing availability: {mqtt.error_string(result.rc)}")

    def publish_config(self):
        """Publish sensor configurations for HomeAssistant autodiscovery"""
        log.debug("Publishing sensor configurations...")
        for var, (sensor_id, name, unit, device_class) in SENSORS.items():
            config = {
                "name": name,
                "state_topic": self.state_topic,
                "value_template": f"{{{{ value_json['{var}'] }}}}",
                "availability_topic": self.availability_topic,
                "unique_id": f"nut_{self.ups_name}_{sensor_id}",
                "device": self.device_config,
            }
            if unit:
                config["unit_of_measurement"] = unit
                config["state_class"] = "measurement"
            if device_class:
                config["device_class"] = device_class
            topic = f"homeassistant/sensor/nut_{self.ups_name}/{sensor_id}/config"
            self.client.publish(topic, json.dumps(config), qos=1, retain=True)
            log.debug(f"Published config for {sensor_id}")

        config = {
            "name": "UPS On Battery",
            "state_topic": self.power_topic,
            "payload_on": "battery",
            "payload_off": "mains",
            "device_class": "power",
            "availability_topic": self.availability_topic,
            "unique_id": f"nut_{self.ups_name}_on_battery",
            "device": self.device_config,
        }
        topic = f"homeassistant/binary_sensor/nut_{self.ups_name}/on_battery/config"
        self.client.publish(topic, json.dumps(config), qos=1, retain=True)

    def publish_state(self):
        """Publish the current UPS variables as one JSON document"""
        try:
            state_data = self.monitor.list_vars()
        except NUTError as exc:
            log.debug(f"Skipping state publish: {exc}")
            return
        state_data["on_battery"] = self.monitor.on_battery
        self.client.publish(self.state_topic, json.dumps(state_data), qos=1, retain=True)
        log.debug(f"Published state: {json.dumps(state_data, indent=2)}")

    def connect(self):
        """Start the UPS monitor and connect to the MQTT broker"""
        if self.username and self.password:
            self.client.username_pw_set(self.username, self.password)
        self.client.will_set(self.availability_topic, "offline", qos=1, retain=True)

        try:
            log.debug(f"Connecting to MQTT broker at {self.broker}:{self.mqtt_port}...")
            self.client.connect(self.broker, self.mqtt_port, keepalive=60)
            self.client.loop_start()
        except OSError as e:
            log.error(f"Failed to connect to MQTT broker: {e}")
            return False

        self.monitor.start()
        return True

    def disconnect(self):
        """Disconnect from MQTT broker and NUT server"""
        log.info("Shutting down...")
        self.running = False
        self.monitor.close()
        self.client.publish(self.availability_topic, "offline", qos=1, retain=True)
        time.sleep(0.5)  # Give publish time to complete
        self.client.loop_stop()
        self.client.disconnect()

    def run(self, interval=10):
        """Main loop - publish UPS variables every interval while connected"""
        if not self.connect():
            return

        log.info(f"Publishing UPS status every {interval} second(s)...")
        log.info("Press Ctrl+C to stop")
        try:
            while self.running:
                if self.monitor.connected:
                    self.publish_state()
                time.sleep(interval)
        except KeyboardInterrupt:
            log.info("Interrupted by user")
            self.disconnect()

    def signal_handler(self, sig, frame):
        """Handle termination signals gracefully (SIGINT from Ctrl+C, SIGTERM from kill)"""
        self.disconnect()
        sys.exit(0)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description="MQTT bridge for NUT UPS devices")
    parser.add_argument("--nut-addr", default="localhost:3493", help="NUT server host[:port] (default: localhost:3493)")
    parser.add_argument("--ups", default="ups", help="UPS name on the NUT server (default: ups)")
    parser.add_argument("--broker", default="localhost", help="MQTT broker hostname (default: localhost)")
    parser.add_argument("--broker-port", default=1883, type=int, help="MQTT broker port (default: 1883)")
    parser.add_argument("--username", default=os.environ.get("MQTT_USERNAME"), help="MQTT username")
    parser.add_argument("--password", default=os.environ.get("MQTT_PASSWORD"), help="MQTT password")
    parser.add_argument("--interval", default=10, type=int, help="Publish interval in seconds (default: 10)")
    parser.add_argument("--poll", default=5.0, type=float, help="UPS status poll interval in seconds (default: 5)")
    parser.add_argument("--reconnect", default=30.0, type=float, help="NUT reconnect interval in seconds (default: 30)")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose (DEBUG) logging")
    args = parser.parse_args()

    # Configure logging with timestamp
    log_level = logging.DEBUG if args.verbose else logging.INFO
    log_format = '[%(asctime)s] %(levelname)s: %(message)s'
    logging.basicConfig(level=log_level, format=log_format, datefmt='%H:%M:%S')
    logging.getLogger('nutclient').setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    bridge = NutMQTTBridge(
        nut_addr=args.nut_addr,
        ups_name=args.ups,
        broker=args.broker,
        port=args.broker_port,
        username=args.username,
        password=args.password,
        reconnect_interval=args.reconnect,
        poll_interval=args.poll,
    )

    # Set up signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, bridge.signal_handler)
    signal.signal(signal.SIGTERM, bridge.signal_handler)

    bridge.run(interval=args.interval)


if __name__ == "__main__":
    main()
