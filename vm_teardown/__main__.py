# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# project
from vm_teardown.tasks.teardown_task import main

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
