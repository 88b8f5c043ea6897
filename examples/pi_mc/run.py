"""
Run the π example in-process.

Equivalent to ``jobenv run -p 4 --shutdown-on-attached-exit pi_mc:main
200000 4`` but shows the programmatic API: a Configuration, run_program(),
and the result handed back through the context environment.
"""

import logging

import jobenv
from pi_mc import estimate, main

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    configuration = jobenv.Configuration(
        {
            "target": "local",
            "default-parallelism": 4,
            "shutdown-on-attached-exit": True,
        }
    )
    result = jobenv.run_program(main, configuration, args=("200000", "4"))
    print(f"Final estimate: {estimate(result):.5f}")
