# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Cloud function for the net worth tracker API (serverless deployment).
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.
#
# Storage defaults to Firestore; the client is created on the first request
# of a cold start and reused by warm invocations.

# Third-party library imports
from firebase_functions import https_fn, logger, options

# Local application imports
from tracker.serverless import handle_request

logger.info("Cold start: tracker api function loaded")


@https_fn.on_request(memory=options.MemoryOption.MB_256)
def api(req: https_fn.Request) -> https_fn.Response:
    return handle_request(req)
