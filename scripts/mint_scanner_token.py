# scripts/mint_scanner_token.py
import os  # read environment variables
import argparse  # parse CLI args

from redemption_gate.security import mint_scanner_token  # sign the scanner JWT


def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser()  # CLI parser
    parser.add_argument("--merchant-id", required=True)  # merchant the scanner belongs to
    parser.add_argument("--ttl-minutes", type=int, default=720)  # token lifetime (one shift)
    args = parser.parse_args()  # parse args

    secret = os.environ.get("SCANNER_TOKEN_SECRET", "dev_scanner_secret_change_me")  # signing secret

    token = mint_scanner_token(args.merchant_id, secret, ttl_minutes=args.ttl_minutes)  # sign token
    print(token)  # output token to stdout


if __name__ == "__main__":  # run as script
    main()  # call main
