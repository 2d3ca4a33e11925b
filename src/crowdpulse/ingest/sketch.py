"""Arduino starter sketch for an ESP32 counter posting to ``/esp32-update``."""

from string import Template

DEFAULT_DEVICE_UID = "YOUR_DEVICE_UID"
REPORT_INTERVAL_MS = 30000

_SKETCH = Template(r"""#include <WiFi.h>
#include <HTTPClient.h>

const char* ssid = "YOUR_WIFI_SSID";
const char* password = "YOUR_WIFI_PASSWORD";
const char* apiKey = "$api_key";
const char* deviceId = "$device_uid";
const char* serverUrl = "$server_url";

// Count people using IR sensors or ultrasonic
int getPeopleCount() {
  // Replace with your actual sensor reading
  return analogRead(34) > 2000 ? 1 : 0;
}

void setup() {
  Serial.begin(115200);
  WiFi.begin(ssid, password);
  while (WiFi.status() != WL_CONNECTED) {
    delay(500);
    Serial.print(".");
  }
  Serial.println("Connected!");
}

void loop() {
  if (WiFi.status() == WL_CONNECTED) {
    HTTPClient http;
    http.begin(serverUrl);
    http.addHeader("Content-Type", "application/json");

    int count = getPeopleCount();
    String body = "{\"device_id\":\"" + String(deviceId) +
                  "\",\"people_count\":" + String(count) +
                  ",\"api_key\":\"" + String(apiKey) + "\"}";

    int code = http.POST(body);
    Serial.println("Response: " + String(code));
    http.end();
  }
  delay($interval); // Send every 30 seconds
}
""")


def _c_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def render_sketch(api_key: str, server_url: str, device_uid: str | None = None) -> str:
    """Fill in the sketch with the owner's key and the ingestion URL.

    ``device_uid`` falls back to a placeholder the owner edits before flashing.
    """
    return _SKETCH.substitute(
        api_key=_c_string(api_key),
        device_uid=_c_string(device_uid or DEFAULT_DEVICE_UID),
        server_url=_c_string(server_url),
        interval=REPORT_INTERVAL_MS,
    )
